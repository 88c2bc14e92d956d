"""Exception hierarchy shared by the indexer and the retriever."""

from typing import Optional


class ChartQAError(Exception):
    """Base class for chartqa errors."""


class SessionNotFoundError(ChartQAError):
    """The session was never indexed, or has been deleted."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not found: {session_id}")


class SessionNotReadyError(ChartQAError):
    """Ingestion for the session has not finished yet."""

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Session not ready: {session_id} is still being indexed")


class IngestionError(ChartQAError):
    """Chunking or batch embedding failed; nothing was persisted."""

    def __init__(self, session_id: str, message: str, cause: Optional[Exception] = None):
        self.session_id = session_id
        self.cause = cause
        super().__init__(f"Ingestion failed for session {session_id}: {message}")


class StoreError(ChartQAError):
    """The session/document store could not be read or written."""


class GenerationError(ChartQAError):
    """Text generation is unavailable or returned nothing usable."""
