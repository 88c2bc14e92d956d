"""
Configuration Management for ChartQA

Loads configuration from ~/.chartqa/config.json and environment variables.
"""

import os
import json
import logging
from pathlib import Path
from dataclasses import dataclass, field

logger = logging.getLogger("chartqa.common.config")

# Default config paths
CONFIG_DIR = Path.home() / ".chartqa"
CONFIG_PATH = CONFIG_DIR / "config.json"
STORE_PATH = CONFIG_DIR / "sessions.json"


@dataclass
class EmbeddingConfig:
    """Embedding backend configuration"""
    provider: str = "google"  # google, openai, or local
    google_model: str = "models/text-embedding-004"
    openai_model: str = "text-embedding-3-small"


@dataclass
class LLMConfig:
    """Text-generation provider configuration"""
    provider: str = "google"
    anthropic_api_key: str = ""
    anthropic_model: str = "claude-sonnet-4-20250514"
    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    google_api_key: str = ""
    google_model: str = "gemini-2.5-flash-lite"
    max_tokens: int = 500
    timeout: float = 30.0

    @property
    def model(self) -> str:
        """Model name for the selected provider"""
        return {
            "anthropic": self.anthropic_model,
            "openai": self.openai_model,
            "google": self.google_model,
        }.get(self.provider, "")


@dataclass
class RetrievalConfig:
    """Chunking, scoring and routing constants"""
    chunk_size: int = 800
    chunk_overlap: int = 100
    similarity_threshold: float = 0.3
    hyde_threshold: float = 0.25  # blended score is attenuated by the 0.3/0.7 mix
    default_k: int = 4
    indexed_threshold: int = 2000  # characters; longer documents are chunked
    query_weight: float = 0.3
    hypothetical_weight: float = 0.7
    keyword_bonus_weight: float = 0.2
    domain_bonus_weight: float = 0.3
    hyde_similarity_weight: float = 0.7
    hyde_keyword_weight: float = 0.3
    hyde_enabled: bool = True
    context_exchanges: int = 5
    call_timeout: float = 30.0


@dataclass
class StoreConfig:
    """Session/document store configuration"""
    backend: str = "memory"  # memory or json
    path: str = str(STORE_PATH)


@dataclass
class ChartQAConfig:
    """Main ChartQA configuration"""
    embedding: EmbeddingConfig = field(default_factory=EmbeddingConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    _env_sourced_keys: set = field(default_factory=set, repr=False)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def _parse_embedding_config(data: dict) -> EmbeddingConfig:
    """Parse embedding section from config dict"""
    embedding_data = data.get("embedding", {})
    defaults = EmbeddingConfig()
    return EmbeddingConfig(
        provider=embedding_data.get("provider", defaults.provider),
        google_model=embedding_data.get("google_model", defaults.google_model),
        openai_model=embedding_data.get("openai_model", defaults.openai_model),
    )


def _parse_llm_config(data: dict) -> LLMConfig:
    """Parse llm section from config dict"""
    llm_data = data.get("llm", {})
    defaults = LLMConfig()
    return LLMConfig(
        provider=llm_data.get("provider", defaults.provider),
        anthropic_api_key=llm_data.get("anthropic_api_key", ""),
        anthropic_model=llm_data.get("anthropic_model", defaults.anthropic_model),
        openai_api_key=llm_data.get("openai_api_key", ""),
        openai_model=llm_data.get("openai_model", defaults.openai_model),
        google_api_key=llm_data.get("google_api_key", ""),
        google_model=llm_data.get("google_model", defaults.google_model),
        max_tokens=int(llm_data.get("max_tokens", defaults.max_tokens)),
        timeout=float(llm_data.get("timeout", defaults.timeout)),
    )


def _parse_retrieval_config(data: dict) -> RetrievalConfig:
    """Parse retrieval section; unknown keys are ignored, missing keys keep defaults"""
    retrieval_data = data.get("retrieval", {})
    config = RetrievalConfig()
    for name, default in vars(RetrievalConfig()).items():
        if name not in retrieval_data:
            continue
        value = retrieval_data[name]
        if isinstance(default, bool):
            value = value if isinstance(value, bool) else _env_flag(str(value))
        setattr(config, name, type(default)(value))
    return config


def _parse_store_config(data: dict) -> StoreConfig:
    """Parse store section from config dict"""
    store_data = data.get("store", {})
    return StoreConfig(
        backend=store_data.get("backend", "memory"),
        path=store_data.get("path", str(STORE_PATH)),
    )


def load_config() -> ChartQAConfig:
    """
    Load configuration from file and environment variables.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file (~/.chartqa/config.json)
    3. Default values
    """
    config = ChartQAConfig()

    # Load from config file if exists
    if CONFIG_PATH.exists():
        try:
            with open(CONFIG_PATH) as f:
                data = json.load(f)

            config.embedding = _parse_embedding_config(data)
            config.llm = _parse_llm_config(data)
            config.retrieval = _parse_retrieval_config(data)
            config.store = _parse_store_config(data)
        except (json.JSONDecodeError, IOError, ValueError) as e:
            logger.warning("Failed to load config file %s: %s", CONFIG_PATH, e)

    # LLM env var overrides (track env-sourced keys so they are never saved)
    _env_llm_map = {
        "ANTHROPIC_API_KEY": "anthropic_api_key",
        "ANTHROPIC_MODEL": "anthropic_model",
        "OPENAI_API_KEY": "openai_api_key",
        "OPENAI_MODEL": "openai_model",
        "GOOGLE_API_KEY": "google_api_key",
        "GEMINI_API_KEY": "google_api_key",
        "GOOGLE_MODEL": "google_model",
        "CHARTQA_LLM_PROVIDER": "provider",
    }
    for env_var, attr in _env_llm_map.items():
        val = os.getenv(env_var)
        if val:
            setattr(config.llm, attr, val)
            config._env_sourced_keys.add(attr)

    if os.getenv("CHARTQA_EMBEDDING_PROVIDER"):
        config.embedding.provider = os.getenv("CHARTQA_EMBEDDING_PROVIDER")
    if os.getenv("CHARTQA_HYDE_ENABLED"):
        config.retrieval.hyde_enabled = _env_flag(os.getenv("CHARTQA_HYDE_ENABLED"))
    if os.getenv("CHARTQA_SIMILARITY_THRESHOLD"):
        config.retrieval.similarity_threshold = float(os.getenv("CHARTQA_SIMILARITY_THRESHOLD"))
    if os.getenv("CHARTQA_HYDE_THRESHOLD"):
        config.retrieval.hyde_threshold = float(os.getenv("CHARTQA_HYDE_THRESHOLD"))

    if os.getenv("CHARTQA_STORE_BACKEND"):
        config.store.backend = os.getenv("CHARTQA_STORE_BACKEND")
    if os.getenv("CHARTQA_STORE_PATH"):
        config.store.path = os.getenv("CHARTQA_STORE_PATH")

    return config


def save_config(config: ChartQAConfig) -> None:
    """Save configuration to file.

    API key fields that were sourced from environment variables are written
    as empty strings so that secrets are not persisted to disk.
    """
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)

    env_sourced = getattr(config, "_env_sourced_keys", set())

    llm_section = {
        "provider": config.llm.provider,
        "anthropic_api_key": config.llm.anthropic_api_key,
        "anthropic_model": config.llm.anthropic_model,
        "openai_api_key": config.llm.openai_api_key,
        "openai_model": config.llm.openai_model,
        "google_api_key": config.llm.google_api_key,
        "google_model": config.llm.google_model,
        "max_tokens": config.llm.max_tokens,
        "timeout": config.llm.timeout,
    }
    for key in ("anthropic_api_key", "openai_api_key", "google_api_key"):
        if key in env_sourced:
            llm_section[key] = ""

    data = {
        "embedding": {
            "provider": config.embedding.provider,
            "google_model": config.embedding.google_model,
            "openai_model": config.embedding.openai_model,
        },
        "llm": llm_section,
        "retrieval": dict(vars(config.retrieval)),
        "store": {
            "backend": config.store.backend,
            "path": config.store.path,
        },
    }

    with open(CONFIG_PATH, "w") as f:
        json.dump(data, f, indent=2)

    # Set secure permissions
    CONFIG_PATH.chmod(0o600)
