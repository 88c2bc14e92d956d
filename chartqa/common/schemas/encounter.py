"""
Encounter Schemas

Persisted shapes for an indexed clinical encounter. Field names mirror the
session and chunk tables of the relational store.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import List

from pydantic import BaseModel, ConfigDict, Field

# Explicit boundary between the transcript and the structured note
SECTION_SEPARATOR = "\n\n--- SOAP NOTE ---\n\n"

# Canonical SOAP section headers (matched case-insensitively)
NOTE_HEADERS = ("subjective:", "objective:", "assessment:", "plan:")


class ChunkKind(str, Enum):
    """Coarse origin of a chunk"""
    TRANSCRIPT = "transcript"
    NOTE = "note"


class RetrievalMode(str, Enum):
    """Per-session retrieval strategy, fixed at session creation"""
    FULL_CONTEXT = "full_context"
    INDEXED = "indexed"


class EncounterDocument(BaseModel):
    """Transcript plus optional SOAP note; immutable once ingested"""
    model_config = ConfigDict(frozen=True)

    transcript: str
    note: str = ""

    @property
    def combined_text(self) -> str:
        return f"{self.transcript}{SECTION_SEPARATOR}{self.note}"


class Chunk(BaseModel):
    """A contiguous span of the combined document text"""
    model_config = ConfigDict(frozen=True)

    session_id: str
    index: int = Field(..., ge=0, description="Position in split order")
    content: str
    kind: ChunkKind
    start_index: int = Field(default=0, ge=0, description="Offset in the combined text")

    @property
    def length(self) -> int:
        return len(self.content)


class ChunkMetadata(BaseModel):
    """Metadata column of a chunk row"""
    chunk_index: int
    session_id: str
    kind: ChunkKind
    length: int
    start_index: int = 0


class ChunkRecord(BaseModel):
    """A chunk row: content, metadata and the JSON-serialized vector"""
    session_id: str
    chunk_index: int
    content: str
    metadata: ChunkMetadata
    embedding: str

    @classmethod
    def from_chunk(cls, chunk: Chunk, vector: List[float]) -> "ChunkRecord":
        return cls(
            session_id=chunk.session_id,
            chunk_index=chunk.index,
            content=chunk.content,
            metadata=ChunkMetadata(
                chunk_index=chunk.index,
                session_id=chunk.session_id,
                kind=chunk.kind,
                length=chunk.length,
                start_index=chunk.start_index,
            ),
            embedding=json.dumps(vector),
        )

    @property
    def vector(self) -> List[float]:
        return json.loads(self.embedding)

    def to_chunk(self) -> Chunk:
        return Chunk(
            session_id=self.session_id,
            index=self.chunk_index,
            content=self.content,
            kind=self.metadata.kind,
            start_index=self.metadata.start_index,
        )


class SessionRecord(BaseModel):
    """Session retrieval state, written once at session creation"""
    session_id: str
    transcript: str
    note: str = ""
    chunk_count: int = 0
    total_length: int = 0
    uses_indexed_retrieval: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def mode(self) -> RetrievalMode:
        if self.uses_indexed_retrieval:
            return RetrievalMode.INDEXED
        return RetrievalMode.FULL_CONTEXT

    @property
    def document(self) -> EncounterDocument:
        return EncounterDocument(transcript=self.transcript, note=self.note)
