"""
ChartQA Encounter Schemas

Session, chunk and document models shared by the indexer, the store and the
retriever.
"""

from .encounter import (
    SECTION_SEPARATOR,
    NOTE_HEADERS,
    ChunkKind,
    RetrievalMode,
    EncounterDocument,
    Chunk,
    ChunkMetadata,
    ChunkRecord,
    SessionRecord,
)

__all__ = [
    "SECTION_SEPARATOR",
    "NOTE_HEADERS",
    "ChunkKind",
    "RetrievalMode",
    "EncounterDocument",
    "Chunk",
    "ChunkMetadata",
    "ChunkRecord",
    "SessionRecord",
]
