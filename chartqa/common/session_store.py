"""
Session Store

Persists session retrieval state and chunk rows (content + metadata +
serialized vector). Chunk rows are written once per session and read-only
afterwards; deleting a session cascades to its chunks.

Backends:
- InMemorySessionStore: process-local dicts
- JsonFileSessionStore: a single JSON file (default ~/.chartqa/sessions.json)
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Protocol

from .config import StoreConfig
from .errors import StoreError
from .schemas import Chunk, ChunkRecord, SessionRecord

logger = logging.getLogger("chartqa.common.session_store")


class SessionStore(Protocol):
    """Document/session store used by the orchestrator"""

    def put_session(self, record: SessionRecord) -> None:
        ...

    def put_chunks(self, session_id: str, chunks: List[Chunk], vectors: List[List[float]]) -> None:
        ...

    def get_chunks(self, session_id: str) -> List[ChunkRecord]:
        ...

    def get_session_meta(self, session_id: str) -> Optional[SessionRecord]:
        ...

    def delete_session(self, session_id: str) -> bool:
        ...


def _build_records(
    session_id: str,
    chunks: List[Chunk],
    vectors: List[List[float]],
) -> List[ChunkRecord]:
    if len(chunks) != len(vectors):
        raise StoreError(
            f"Chunk/vector count mismatch for session {session_id}: "
            f"{len(chunks)} chunks, {len(vectors)} vectors"
        )
    return [ChunkRecord.from_chunk(chunk, vector) for chunk, vector in zip(chunks, vectors)]


class InMemorySessionStore:
    """Dict-backed store; contents are lost when the process exits."""

    def __init__(self):
        self._sessions: Dict[str, SessionRecord] = {}
        self._chunks: Dict[str, List[ChunkRecord]] = {}

    def put_session(self, record: SessionRecord) -> None:
        if record.session_id in self._sessions:
            raise StoreError(f"Session already exists: {record.session_id}")
        self._sessions[record.session_id] = record

    def put_chunks(self, session_id: str, chunks: List[Chunk], vectors: List[List[float]]) -> None:
        if session_id not in self._sessions:
            raise StoreError(f"Cannot store chunks for unknown session: {session_id}")
        records = _build_records(session_id, chunks, vectors)
        # Single assignment: readers never see a partial chunk set
        self._chunks[session_id] = sorted(records, key=lambda r: r.chunk_index)

    def get_chunks(self, session_id: str) -> List[ChunkRecord]:
        return list(self._chunks.get(session_id, []))

    def get_session_meta(self, session_id: str) -> Optional[SessionRecord]:
        return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        self._chunks.pop(session_id, None)
        return self._sessions.pop(session_id, None) is not None

    def session_ids(self) -> List[str]:
        return list(self._sessions)


class JsonFileSessionStore(InMemorySessionStore):
    """
    Store persisted to one JSON file.

    The whole file is loaded at start-up and rewritten on every change.
    Suitable for a single process.
    """

    def __init__(self, path: Optional[Path] = None):
        super().__init__()
        self._path = Path(path) if path else Path(StoreConfig().path)
        self._load()

    def _load(self) -> None:
        """Load sessions and chunks from disk"""
        if not self._path.exists():
            return

        try:
            with open(self._path) as f:
                data = json.load(f)

            for item in data.get("sessions", []):
                record = SessionRecord.model_validate(item)
                self._sessions[record.session_id] = record
            for item in data.get("chunks", []):
                row = ChunkRecord.model_validate(item)
                self._chunks.setdefault(row.session_id, []).append(row)
            for rows in self._chunks.values():
                rows.sort(key=lambda r: r.chunk_index)
        except (json.JSONDecodeError, IOError, ValueError) as e:
            raise StoreError(f"Failed to load session store {self._path}: {e}") from e

        logger.info("Loaded %d sessions from %s", len(self._sessions), self._path)

    def _save(self) -> None:
        """Save sessions and chunks to disk"""
        data = {
            "sessions": [s.model_dump(mode="json") for s in self._sessions.values()],
            "chunks": [
                row.model_dump(mode="json")
                for rows in self._chunks.values()
                for row in rows
            ],
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
            with open(tmp_path, "w") as f:
                json.dump(data, f)
            tmp_path.replace(self._path)
        except OSError as e:
            raise StoreError(f"Failed to write session store {self._path}: {e}") from e

    def put_session(self, record: SessionRecord) -> None:
        super().put_session(record)
        self._save()

    def put_chunks(self, session_id: str, chunks: List[Chunk], vectors: List[List[float]]) -> None:
        super().put_chunks(session_id, chunks, vectors)
        self._save()

    def delete_session(self, session_id: str) -> bool:
        deleted = super().delete_session(session_id)
        if deleted:
            self._save()
        return deleted


def create_session_store(config: StoreConfig) -> SessionStore:
    """Build the store selected by config.backend"""
    if config.backend == "json":
        return JsonFileSessionStore(Path(config.path).expanduser())
    if config.backend != "memory":
        logger.warning("Unknown store backend %r, using in-memory store", config.backend)
    return InMemorySessionStore()
