"""
ChartQA Common Module

Shared infrastructure for the indexer and the retriever.
"""

from .config import ChartQAConfig, load_config
from .embedding_service import BackendSwitch, EmbeddingService
from .llm_client import LLMClient
from .session_store import InMemorySessionStore, JsonFileSessionStore, create_session_store
from .conversation import InMemoryConversationStore, Turn

__all__ = [
    "ChartQAConfig",
    "load_config",
    "BackendSwitch",
    "EmbeddingService",
    "LLMClient",
    "InMemorySessionStore",
    "JsonFileSessionStore",
    "create_session_store",
    "InMemoryConversationStore",
    "Turn",
]
