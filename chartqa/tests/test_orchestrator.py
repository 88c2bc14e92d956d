"""Tests for session creation and query routing."""

import asyncio
import logging
import threading

import pytest
from unittest.mock import Mock

from chartqa.common.config import RetrievalConfig
from chartqa.common.embedding_service import BackendSwitch, EmbeddingService
from chartqa.common.errors import (
    IngestionError,
    SessionNotFoundError,
    SessionNotReadyError,
    StoreError,
)
from chartqa.common.llm_client import LLMClient
from chartqa.common.schemas import Chunk, ChunkKind, RetrievalMode, SessionRecord
from chartqa.common.session_store import InMemorySessionStore
from chartqa.retriever.orchestrator import RetrievalOrchestrator

SHORT_TRANSCRIPT = "DOCTOR: Any chest pain?\nPATIENT: No, just a cough for three days."
SHORT_NOTE = "Assessment: Viral URI.\nPlan: Fluids and rest."

LINES = [
    "DOCTOR: Good morning, what brings you in today?",
    "PATIENT: I've had a dull ache in my chest for about two weeks.",
    "DOCTOR: Does it get worse when you climb stairs or walk quickly?",
    "PATIENT: Yes, and I get short of breath after one flight.",
    "DOCTOR: Your blood pressure today is 152 over 96.",
    "PATIENT: That sounds high. Is that why I feel tired?",
]
LONG_TRANSCRIPT = "\n".join(f"[{i}] {line}" for i in range(8) for line in LINES)
LONG_NOTE = "Assessment: Stage 2 hypertension.\nPlan: Start lisinopril 10 mg daily."


def local_embedding():
    return EmbeddingService(switch=BackendSwitch())


def unavailable_llm():
    return LLMClient(provider="google")


def make_orchestrator(store=None, embedding=None, llm=None, config=None):
    return RetrievalOrchestrator(
        store or InMemorySessionStore(),
        embedding or local_embedding(),
        llm or unavailable_llm(),
        config=config or RetrievalConfig(),
    )


class TestModeDecision:
    def test_threshold_is_exclusive(self):
        orchestrator = make_orchestrator()
        assert orchestrator.should_use_indexed(2000) is False
        assert orchestrator.should_use_indexed(2001) is True

    @pytest.mark.asyncio
    async def test_short_document_full_context(self):
        store = InMemorySessionStore()
        orchestrator = make_orchestrator(store=store)

        record = await orchestrator.create_session("s1", SHORT_TRANSCRIPT, SHORT_NOTE)

        assert record.mode == RetrievalMode.FULL_CONTEXT
        assert record.chunk_count == 0
        assert store.get_chunks("s1") == []

    @pytest.mark.asyncio
    async def test_long_document_indexed(self):
        store = InMemorySessionStore()
        orchestrator = make_orchestrator(store=store)

        record = await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        assert record.mode == RetrievalMode.INDEXED
        assert record.total_length > 2000
        assert record.chunk_count == len(store.get_chunks("s1")) > 1
        kinds = {row.metadata.kind for row in store.get_chunks("s1")}
        assert kinds == {ChunkKind.TRANSCRIPT, ChunkKind.NOTE}


class TestCreateSession:
    @pytest.mark.asyncio
    async def test_duplicate_rejected(self):
        orchestrator = make_orchestrator()
        await orchestrator.create_session("s1", SHORT_TRANSCRIPT)
        with pytest.raises(StoreError):
            await orchestrator.create_session("s1", SHORT_TRANSCRIPT)

    @pytest.mark.asyncio
    async def test_embedding_failure_persists_nothing(self):
        store = InMemorySessionStore()
        embedding = Mock()
        embedding.embed.side_effect = RuntimeError("backend down")
        orchestrator = make_orchestrator(store=store, embedding=embedding)

        with pytest.raises(IngestionError):
            await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        assert store.get_session_meta("s1") is None

    @pytest.mark.asyncio
    async def test_chunk_write_failure_rolls_back_session(self):
        class FailingChunkStore(InMemorySessionStore):
            def put_chunks(self, session_id, chunks, vectors):
                raise StoreError("disk full")

        store = FailingChunkStore()
        orchestrator = make_orchestrator(store=store)

        with pytest.raises(StoreError, match="disk full"):
            await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        assert store.get_session_meta("s1") is None
        with pytest.raises(SessionNotFoundError):
            await orchestrator.retrieve("s1", "chest pain")

    @pytest.mark.asyncio
    async def test_query_during_ingestion_not_ready(self):
        gate = threading.Event()

        class GatedEmbedding(EmbeddingService):
            def embed(self, texts):
                gate.wait(5)
                return super().embed(texts)

        orchestrator = make_orchestrator(embedding=GatedEmbedding(switch=BackendSwitch()))
        task = asyncio.create_task(
            orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)
        )
        await asyncio.sleep(0.05)

        try:
            with pytest.raises(SessionNotReadyError):
                await orchestrator.retrieve("s1", "chest pain")
        finally:
            gate.set()
        await task

        response = await orchestrator.retrieve("s1", "chest pain")
        assert response.mode == RetrievalMode.INDEXED


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_unknown_session(self):
        with pytest.raises(SessionNotFoundError):
            await make_orchestrator().retrieve("missing", "chest pain")

    @pytest.mark.asyncio
    async def test_full_context_returns_document(self):
        orchestrator = make_orchestrator()
        await orchestrator.create_session("s1", SHORT_TRANSCRIPT, SHORT_NOTE)

        response = await orchestrator.retrieve("s1", "What medications?")

        assert response.mode == RetrievalMode.FULL_CONTEXT
        assert response.results == []
        assert response.found
        assert response.document.transcript == SHORT_TRANSCRIPT
        assert SHORT_NOTE in response.document_text

    @pytest.mark.asyncio
    async def test_indexed_session_without_chunks_returns_empty(self):
        store = InMemorySessionStore()
        store.put_session(SessionRecord(
            session_id="s1",
            transcript=LONG_TRANSCRIPT,
            total_length=len(LONG_TRANSCRIPT),
            uses_indexed_retrieval=True,
        ))

        response = await make_orchestrator(store=store).retrieve("s1", "chest pain")

        assert response.mode == RetrievalMode.INDEXED
        assert response.results == []
        assert not response.found

    @pytest.mark.asyncio
    async def test_plain_query_skips_enhancement(self):
        llm = Mock()
        orchestrator = make_orchestrator(llm=llm)
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        response = await orchestrator.retrieve("s1", "chest pain")

        assert not response.enhanced
        assert len(response.results) <= 4
        llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_question_is_enhanced(self):
        llm = Mock()
        llm.generate.side_effect = [
            '{"question_type": "medication", "search_terms": ["lisinopril"]}',
            "Plan: Start lisinopril 10 mg daily for hypertension.",
        ]
        orchestrator = make_orchestrator(llm=llm)
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        response = await orchestrator.retrieve("s1", "What medications?", context="prior turns")

        assert response.enhanced
        assert "Question type: medication" in response.reasoning
        assert response.hypothetical_answer.startswith("Plan: Start lisinopril")
        assert "prior turns" in llm.generate.call_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_enhancement_disabled(self):
        llm = Mock()
        orchestrator = make_orchestrator(llm=llm)
        orchestrator.hyde_enabled = False
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        response = await orchestrator.retrieve("s1", "What medications?")

        assert not response.enhanced
        llm.generate.assert_not_called()
        assert orchestrator.embedding_status()["hyde_enabled"] is False

    @pytest.mark.asyncio
    async def test_unavailable_llm_falls_back_to_standard(self):
        orchestrator = make_orchestrator()
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        response = await orchestrator.retrieve("s1", "What medications?")

        assert response.mode == RetrievalMode.INDEXED
        assert not response.enhanced

    @pytest.mark.asyncio
    async def test_k_limits_results(self):
        config = RetrievalConfig(similarity_threshold=-1.0)
        orchestrator = make_orchestrator(config=config)
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        response = await orchestrator.retrieve("s1", "chest pain", k=2)

        assert len(response.results) == 2

    @pytest.mark.asyncio
    async def test_dimension_mismatch_reembeds_without_touching_store(self, caplog):
        store = InMemorySessionStore()
        store.put_session(SessionRecord(
            session_id="s1", transcript="x", total_length=3000, uses_indexed_retrieval=True,
        ))
        target = "Plan: start lisinopril 10 mg daily."
        store.put_chunks(
            "s1",
            [
                Chunk(session_id="s1", index=0, content="PATIENT: my knee hurts sometimes.",
                      kind=ChunkKind.TRANSCRIPT),
                Chunk(session_id="s1", index=1, content=target, kind=ChunkKind.NOTE),
            ],
            [[0.1, 0.2, 0.3], [0.3, 0.2, 0.1]],
        )
        orchestrator = make_orchestrator(store=store)

        with caplog.at_level(logging.WARNING, logger="chartqa.retriever.searcher"):
            response = await orchestrator.retrieve("s1", target)

        assert response.results[0].chunk_index == 1
        assert response.results[0].similarity == pytest.approx(1.0)
        assert "do not match" in caplog.text
        assert all(len(row.vector) == 3 for row in store.get_chunks("s1"))


class TestSessionInfo:
    @pytest.mark.asyncio
    async def test_info_and_delete(self):
        orchestrator = make_orchestrator()
        await orchestrator.create_session("s1", LONG_TRANSCRIPT, LONG_NOTE)

        info = orchestrator.get_session_info("s1")
        assert info.uses_indexed_retrieval

        assert orchestrator.delete_session("s1") is True
        assert orchestrator.get_session_info("s1") is None
        assert orchestrator.delete_session("s1") is False
        with pytest.raises(SessionNotFoundError):
            await orchestrator.retrieve("s1", "chest pain")

    def test_embedding_status(self):
        status = make_orchestrator().embedding_status()
        assert status["provider"] == "local"
        assert status["hyde_enabled"] is True
