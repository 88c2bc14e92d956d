"""
Retrieval Orchestrator

Entry point for the indexer and the retriever:

- create_session: decide the retrieval mode once, index long documents and
  persist session + chunks atomically
- retrieve: route a query to full-context mode, enhanced search or
  standard search

Sessions whose combined text is at most indexed_threshold characters are
never chunked; the caller hands the whole document to the model instead.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..common.config import RetrievalConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import SessionNotFoundError, SessionNotReadyError, StoreError
from ..common.llm_client import LLMClient
from ..common.schemas import EncounterDocument, RetrievalMode, SessionRecord
from ..common.session_store import SessionStore
from ..indexer import ChunkIndexer
from .query_enhancer import QueryEnhancer
from .query_processor import QueryProcessor
from .searcher import CandidateChunk, RetrievalResult, Searcher, align_vectors

logger = logging.getLogger("chartqa.retriever.orchestrator")


@dataclass
class RetrievalResponse:
    """What the answer step receives for one query"""
    session_id: str
    mode: RetrievalMode
    results: List[RetrievalResult] = field(default_factory=list)
    enhanced: bool = False
    reasoning: Optional[str] = None
    hypothetical_answer: Optional[str] = None
    document: Optional[EncounterDocument] = None

    @property
    def document_text(self) -> Optional[str]:
        return self.document.combined_text if self.document else None

    @property
    def found(self) -> bool:
        """False only when indexed retrieval produced no passages"""
        return self.mode == RetrievalMode.FULL_CONTEXT or bool(self.results)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "mode": self.mode.value,
            "results": [r.to_dict() for r in self.results],
            "enhanced": self.enhanced,
            "reasoning": self.reasoning,
            "hypothetical_answer": self.hypothetical_answer,
        }


class RetrievalOrchestrator:
    """
    Session-scoped retrieval.

    Features:
    - Mode decision by document length (fixed per session)
    - Atomic ingestion: a failed chunk write removes the session row
    - Enhanced search for questions, standard search otherwise
    - Transient re-embedding when stored vectors came from another backend
    """

    def __init__(
        self,
        store: SessionStore,
        embedding_service: EmbeddingService,
        llm_client: LLMClient,
        config: Optional[RetrievalConfig] = None,
        max_tokens: int = 500,
    ):
        self._store = store
        self._embedding = embedding_service
        self._config = config or RetrievalConfig()
        self._hyde_enabled = self._config.hyde_enabled
        self._pending: Set[str] = set()

        self._processor = QueryProcessor()
        self._indexer = ChunkIndexer(
            embedding_service,
            chunk_size=self._config.chunk_size,
            chunk_overlap=self._config.chunk_overlap,
        )
        self._searcher = Searcher(
            embedding_service,
            similarity_threshold=self._config.similarity_threshold,
            default_k=self._config.default_k,
            keyword_bonus_weight=self._config.keyword_bonus_weight,
            domain_bonus_weight=self._config.domain_bonus_weight,
        )
        self._enhancer = QueryEnhancer(
            llm_client,
            embedding_service,
            self._searcher,
            config=self._config,
            max_tokens=max_tokens,
        )

    @property
    def hyde_enabled(self) -> bool:
        return self._hyde_enabled

    @hyde_enabled.setter
    def hyde_enabled(self, value: bool) -> None:
        self._hyde_enabled = bool(value)
        logger.info("Query enhancement %s", "enabled" if value else "disabled")

    @property
    def searcher(self) -> Searcher:
        return self._searcher

    @property
    def enhancer(self) -> QueryEnhancer:
        return self._enhancer

    def should_use_indexed(self, total_length: int) -> bool:
        return total_length > self._config.indexed_threshold

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    async def create_session(
        self,
        session_id: str,
        transcript: str,
        note: str = "",
    ) -> SessionRecord:
        """
        Create a session and, for long documents, index it.

        Raises:
            StoreError: session already exists or the store write failed
            IngestionError: chunking or embedding failed (nothing persisted)
        """
        if session_id in self._pending or self._store.get_session_meta(session_id):
            raise StoreError(f"Session already exists: {session_id}")

        document = EncounterDocument(transcript=transcript, note=note or "")
        total_length = len(document.combined_text)
        indexed = self.should_use_indexed(total_length)

        self._pending.add(session_id)
        try:
            indexed_doc = None
            if indexed:
                indexed_doc = await asyncio.to_thread(self._indexer.index, session_id, document)

            record = SessionRecord(
                session_id=session_id,
                transcript=document.transcript,
                note=document.note,
                chunk_count=indexed_doc.chunk_count if indexed_doc else 0,
                total_length=total_length,
                uses_indexed_retrieval=indexed,
            )
            self._store.put_session(record)

            if indexed_doc is not None:
                try:
                    self._store.put_chunks(session_id, indexed_doc.chunks, indexed_doc.vectors)
                except Exception:
                    self._store.delete_session(session_id)
                    raise
        finally:
            self._pending.discard(session_id)

        logger.info(
            "Created session %s: %s mode, %d characters, %d chunks",
            session_id, record.mode.value, total_length, record.chunk_count,
        )
        return record

    def get_session_info(self, session_id: str) -> Optional[SessionRecord]:
        return self._store.get_session_meta(session_id)

    def delete_session(self, session_id: str) -> bool:
        deleted = self._store.delete_session(session_id)
        if deleted:
            logger.info("Deleted session %s", session_id)
        return deleted

    def embedding_status(self) -> Dict[str, Any]:
        status = self._embedding.get_status()
        status["hyde_enabled"] = self._hyde_enabled
        return status

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def _embed(self, texts: List[str]) -> List[List[float]]:
        return await self._embedding.embed_async(texts, timeout=self._config.call_timeout)

    async def retrieve(
        self,
        session_id: str,
        query: str,
        k: Optional[int] = None,
        context: str = "",
    ) -> RetrievalResponse:
        """
        Retrieve passages for a question.

        Args:
            session_id: Session to search
            query: User question
            k: Maximum number of passages (default from config)
            context: Conversation context for query enhancement

        Returns:
            RetrievalResponse; in full-context mode it carries the document
            instead of passages

        Raises:
            SessionNotReadyError: ingestion has not finished
            SessionNotFoundError: unknown session
        """
        if session_id in self._pending:
            raise SessionNotReadyError(session_id)

        meta = self._store.get_session_meta(session_id)
        if meta is None:
            raise SessionNotFoundError(session_id)

        if not meta.uses_indexed_retrieval:
            return RetrievalResponse(
                session_id=session_id,
                mode=RetrievalMode.FULL_CONTEXT,
                document=meta.document,
            )

        k = self._config.default_k if k is None else k
        records = self._store.get_chunks(session_id)
        if not records:
            logger.info("Session %s has no chunks", session_id)
            return RetrievalResponse(session_id=session_id, mode=RetrievalMode.INDEXED)

        parsed = self._processor.parse(query)
        query_vector = (await self._embed([query]))[0]
        query_vector, candidates = await align_vectors(
            self._embedding,
            query,
            query_vector,
            [CandidateChunk.from_record(r) for r in records],
            timeout=self._config.call_timeout,
        )

        if self._hyde_enabled and parsed.needs_enhancement:
            outcome = await self._enhancer.enhanced_search(
                query, candidates, context=context, k=k, query_vector=query_vector,
            )
            return RetrievalResponse(
                session_id=session_id,
                mode=RetrievalMode.INDEXED,
                results=outcome.results,
                enhanced=not outcome.used_fallback,
                reasoning=outcome.reasoning or None,
                hypothetical_answer=outcome.hypothetical_answer or None,
            )

        results = self._searcher.search(query, query_vector, candidates, k)
        return RetrievalResponse(
            session_id=session_id,
            mode=RetrievalMode.INDEXED,
            results=results,
        )
