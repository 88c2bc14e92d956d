"""
End-to-end tests for EncounterAssistant

Walks through a visit: ingest, ask follow-up questions, end the session.
Runs on local embeddings; generation is mocked or unavailable.
"""

import pytest
from unittest.mock import AsyncMock, Mock

from chartqa.common.config import ChartQAConfig
from chartqa.common.errors import SessionNotFoundError
from chartqa.common.schemas import RetrievalMode
from chartqa.retriever.assistant import EncounterAssistant
from chartqa.retriever.orchestrator import RetrievalResponse
from chartqa.retriever.synthesizer import NOT_FOUND_MESSAGE, AnswerSynthesizer

SHORT_TRANSCRIPT = "DOCTOR: How is the cough?\nPATIENT: Better since I started the inhaler."
SHORT_NOTE = "Assessment: Resolving bronchitis.\nPlan: Continue albuterol as needed."

LINES = [
    "DOCTOR: What brings you in today?",
    "PATIENT: Headaches every morning for a month.",
    "DOCTOR: Have you checked your blood pressure at home?",
    "PATIENT: A few times, it was around 150 over 95.",
    "DOCTOR: Any family history of hypertension or stroke?",
    "PATIENT: My mother had a stroke at seventy.",
]
LONG_TRANSCRIPT = "\n".join(f"[{i}] {line}" for i in range(12) for line in LINES)
LONG_NOTE = "Assessment: Essential hypertension.\nPlan: Start lisinopril 10 mg daily."


def local_config(**retrieval):
    config = ChartQAConfig()
    config.embedding.provider = "local"
    config.llm.google_api_key = ""
    for name, value in retrieval.items():
        setattr(config.retrieval, name, value)
    return config


class TestFromConfig:
    @pytest.mark.asyncio
    async def test_full_context_session_without_llm(self):
        assistant = EncounterAssistant.from_config(local_config())

        record = await assistant.start_session(SHORT_TRANSCRIPT, SHORT_NOTE, session_id="visit-1")
        reply = await assistant.ask("visit-1", "What medications?")

        assert record.mode == RetrievalMode.FULL_CONTEXT
        assert reply.retrieval.mode == RetrievalMode.FULL_CONTEXT
        assert "inhaler" in reply.text
        assert not reply.answer.used_llm
        assert len(assistant.conversations.get_history("visit-1")) == 2

    def test_each_assistant_builds_its_own_embedding_service(self):
        first = EncounterAssistant.from_config(local_config())
        second = EncounterAssistant.from_config(local_config())

        assert first.orchestrator._embedding is not second.orchestrator._embedding
        assert first.orchestrator.embedding_status()["provider"] == "local"

    @pytest.mark.asyncio
    async def test_generated_session_id(self):
        assistant = EncounterAssistant.from_config(local_config())
        record = await assistant.start_session(SHORT_TRANSCRIPT)
        assert record.session_id

    @pytest.mark.asyncio
    async def test_indexed_session_not_found_message(self):
        assistant = EncounterAssistant.from_config(local_config(similarity_threshold=1.5))
        await assistant.start_session(LONG_TRANSCRIPT, LONG_NOTE, session_id="visit-2")

        reply = await assistant.ask("visit-2", "blood pressure reading")

        assert reply.retrieval.mode == RetrievalMode.INDEXED
        assert reply.text == NOT_FOUND_MESSAGE
        assert reply.to_dict()["retrieval"]["results"] == []

    @pytest.mark.asyncio
    async def test_end_session(self):
        assistant = EncounterAssistant.from_config(local_config())
        await assistant.start_session(SHORT_TRANSCRIPT, session_id="visit-3")
        await assistant.ask("visit-3", "cough")

        assert assistant.end_session("visit-3") is True
        assert assistant.conversations.get_history("visit-3") == []
        with pytest.raises(SessionNotFoundError):
            await assistant.ask("visit-3", "cough")


class TestConversationFlow:
    @pytest.fixture
    def orchestrator(self):
        orchestrator = Mock()
        orchestrator.retrieve = AsyncMock(return_value=RetrievalResponse(
            session_id="s1", mode=RetrievalMode.INDEXED,
        ))
        return orchestrator

    @pytest.mark.asyncio
    async def test_first_question_has_no_context(self, orchestrator):
        assistant = EncounterAssistant(orchestrator, AnswerSynthesizer())

        await assistant.ask("s1", "What medications?")

        assert orchestrator.retrieve.call_args.kwargs["context"] == ""

    @pytest.mark.asyncio
    async def test_follow_up_gets_history_context(self, orchestrator):
        assistant = EncounterAssistant(orchestrator, AnswerSynthesizer(), context_exchanges=1)

        await assistant.ask("s1", "What medications is the patient taking?")
        await assistant.ask("s1", "why?")

        context = orchestrator.retrieve.call_args.kwargs["context"]
        assert "Recent conversation topics: medications." in context
        assert "User: What medications is the patient taking?" in context
        assert f"Assistant: {NOT_FOUND_MESSAGE}" in context

    @pytest.mark.asyncio
    async def test_llm_answer_recorded(self, orchestrator):
        from chartqa.retriever.searcher import RetrievalResult
        from chartqa.common.schemas import ChunkKind

        orchestrator.retrieve.return_value = RetrievalResponse(
            session_id="s1",
            mode=RetrievalMode.INDEXED,
            results=[RetrievalResult(
                text="Plan: Start lisinopril 10 mg daily.", similarity=0.9,
                relevance_score=1.1, kind=ChunkKind.NOTE, chunk_index=7,
            )],
        )
        llm = Mock()
        llm.is_available = True
        llm.generate.return_value = "The patient was started on lisinopril 10 mg daily."
        assistant = EncounterAssistant(orchestrator, AnswerSynthesizer(llm))

        reply = await assistant.ask("s1", "What medications?")

        assert reply.answer.used_llm
        assert "[Chunk 1] Plan: Start lisinopril" in llm.generate.call_args.args[0]
        history = assistant.conversations.get_history("s1")
        assert history[-1].content == reply.text
