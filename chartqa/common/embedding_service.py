"""
Embedding Service

Uniform text-to-vector interface over two strategies:
- remote: Google (text-embedding-004) or OpenAI embeddings API
- local: deterministic feature vectors (see local_embeddings)

The first remote failure flips a process-wide switch to the local strategy.
The switch never flips back while the process lives.
"""

import asyncio
import logging
from typing import List, Optional, Protocol

import numpy as np

from .config import EmbeddingConfig, LLMConfig
from .local_embeddings import LocalEmbeddingStrategy, normalize_vector

logger = logging.getLogger("chartqa.common.embedding_service")


class EmbeddingStrategy(Protocol):
    """A backend that turns texts into vectors"""
    name: str

    def embed(self, texts: List[str]) -> List[List[float]]:
        ...


class BackendSwitch:
    """
    One-way remote -> local switch.

    Written without a lock: the only transition is False -> True, so a
    duplicate flip from a concurrent caller leaves the same state.
    """

    def __init__(self) -> None:
        self.is_degraded = False
        self.quota_exceeded = False
        self.reason: Optional[str] = None

    def degrade(self, reason: str, quota: bool = False) -> None:
        if quota:
            self.quota_exceeded = True
        if self.is_degraded:
            return
        self.reason = reason
        self.is_degraded = True


# Shared by every EmbeddingService unless one is injected
_DEFAULT_SWITCH = BackendSwitch()


def is_rate_limited(error: Exception) -> bool:
    """True for HTTP 429 / quota exhaustion errors from any provider SDK"""
    if type(error).__name__ in ("RateLimitError", "ResourceExhausted", "TooManyRequests"):
        return True
    for attr in ("status_code", "status", "code"):
        if getattr(error, attr, None) == 429:
            return True
    response = getattr(error, "response", None)
    return getattr(response, "status_code", None) == 429


class RemoteEmbeddingStrategy:
    """Embedding via a hosted API (Google or OpenAI)."""

    def __init__(self, provider: str, model: str, api_key: str):
        self.name = provider
        self._provider = provider
        self._model = model
        self._client = None

        if provider == "google":
            import google.generativeai as genai

            genai.configure(api_key=api_key)
            self._client = genai
        elif provider == "openai":
            from openai import OpenAI

            self._client = OpenAI(api_key=api_key)
        else:
            raise ValueError(f"Unsupported embedding provider: {provider}")

    def embed(self, texts: List[str]) -> List[List[float]]:
        if self._provider == "google":
            response = self._client.embed_content(
                model=self._model,
                content=texts,
                task_type="retrieval_document",
            )
            vectors = response["embedding"]
        else:
            response = self._client.embeddings.create(model=self._model, input=texts)
            vectors = [item.embedding for item in response.data]

        if len(vectors) != len(texts):
            raise RuntimeError(
                f"Embedding backend returned {len(vectors)} vectors for {len(texts)} texts"
            )
        return [normalize_vector(np.array(v, dtype=float)).tolist() for v in vectors]


def build_remote_strategy(
    embedding_config: EmbeddingConfig,
    llm_config: LLMConfig,
) -> Optional[RemoteEmbeddingStrategy]:
    """Create the configured remote strategy, or None when it cannot be used"""
    provider = embedding_config.provider
    if provider == "local":
        return None

    if provider == "google":
        api_key, model = llm_config.google_api_key, embedding_config.google_model
    elif provider == "openai":
        api_key, model = llm_config.openai_api_key, embedding_config.openai_model
    else:
        logger.warning("Unsupported embedding provider: %s", provider)
        return None

    if not api_key:
        logger.info("No %s API key found, using local embeddings", provider)
        return None

    try:
        strategy = RemoteEmbeddingStrategy(provider, model, api_key)
    except ImportError as e:
        logger.warning("%s embeddings not available (%s), using local embeddings", provider, e)
        return None
    logger.info("%s embeddings initialized with model=%s", provider, model)
    return strategy


def cosine_similarity(vec1: List[float], vec2: List[float]) -> float:
    """
    Cosine similarity in [-1, 1].

    Returns 0.0 when dimensions differ or either vector is all zeros.
    """
    if len(vec1) != len(vec2) or not vec1:
        return 0.0

    v1 = np.asarray(vec1, dtype=float)
    v2 = np.asarray(vec2, dtype=float)
    denom = float(np.linalg.norm(v1) * np.linalg.norm(v2))
    if denom == 0.0:
        return 0.0

    similarity = float(np.dot(v1, v2)) / denom
    # Clamp to valid range (numerical precision issues)
    return max(-1.0, min(1.0, similarity))


class EmbeddingService:
    """
    Vectorizer used by the indexer and the retriever.

    The interface is identical whichever strategy is active; callers never
    see remote failures.
    """

    def __init__(
        self,
        remote: Optional[EmbeddingStrategy] = None,
        local: Optional[EmbeddingStrategy] = None,
        switch: Optional[BackendSwitch] = None,
    ):
        self._remote = remote
        self._local = local or LocalEmbeddingStrategy()
        self._switch = switch or _DEFAULT_SWITCH

    @classmethod
    def from_config(
        cls,
        embedding_config: EmbeddingConfig,
        llm_config: LLMConfig,
    ) -> "EmbeddingService":
        return cls(remote=build_remote_strategy(embedding_config, llm_config))

    @property
    def uses_remote(self) -> bool:
        """True while the remote strategy is configured and not degraded"""
        return self._remote is not None and not self._switch.is_degraded

    @property
    def provider(self) -> str:
        return self._remote.name if self.uses_remote else self._local.name

    def embed(self, texts: List[str]) -> List[List[float]]:
        """
        Generate embeddings for a list of texts.

        Args:
            texts: List of strings to embed

        Returns:
            List of embedding vectors (L2 normalized or all zeros)
        """
        if not texts:
            return []

        if self.uses_remote:
            try:
                logger.debug("Embedding %d texts with %s", len(texts), self._remote.name)
                return self._remote.embed(texts)
            except Exception as e:
                if is_rate_limited(e):
                    logger.warning(
                        "%s embeddings quota exceeded, switching to local embeddings",
                        self._remote.name,
                    )
                    self._switch.degrade(f"quota exceeded: {e}", quota=True)
                else:
                    logger.warning(
                        "%s embeddings error, switching to local embeddings: %s",
                        self._remote.name, e,
                    )
                    self._switch.degrade(str(e))

        return self._local.embed(texts)

    def embed_single(self, text: str) -> List[float]:
        """Generate embedding for a single text."""
        return self.embed([text])[0]

    async def embed_async(
        self,
        texts: List[str],
        timeout: Optional[float] = None,
    ) -> List[List[float]]:
        """
        embed() off the event loop.

        A remote call that exceeds timeout counts as a remote failure: the
        switch is degraded and the batch is embedded locally.
        """
        try:
            return await asyncio.wait_for(asyncio.to_thread(self.embed, texts), timeout=timeout)
        except asyncio.TimeoutError:
            if not self.uses_remote:
                raise
            logger.warning(
                "%s embeddings timed out after %ss, switching to local embeddings",
                self._remote.name, timeout,
            )
            self._switch.degrade(f"timeout after {timeout}s")
            return self._local.embed(texts)

    def cosine_similarity(self, vec1: List[float], vec2: List[float]) -> float:
        return cosine_similarity(vec1, vec2)

    def batch_cosine_similarity(
        self,
        query_vec: List[float],
        vectors: List[List[float]],
    ) -> List[float]:
        """
        Compute cosine similarity between a query and multiple vectors.

        Rows whose dimension differs from the query score 0.0.
        """
        if not vectors:
            return []

        dims = {len(v) for v in vectors}
        if dims != {len(query_vec)}:
            return [cosine_similarity(query_vec, v) for v in vectors]

        query = np.asarray(query_vec, dtype=float)
        matrix = np.asarray(vectors, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        dots = matrix @ query
        safe_norms = np.where(norms > 0, norms, 1.0)
        similarities = np.where(norms > 0, dots / safe_norms, 0.0)

        return np.clip(similarities, -1.0, 1.0).tolist()

    def get_status(self) -> dict:
        return {
            "remote_configured": self._remote is not None,
            "use_local_embeddings": not self.uses_remote,
            "quota_exceeded": self._switch.quota_exceeded,
            "degrade_reason": self._switch.reason,
            "provider": self.provider,
        }
