"""
Encounter Assistant

Question answering over one clinical encounter per session:

1. start_session: ingest transcript + SOAP note
2. ask: build conversation context, retrieve, synthesize, record the exchange
3. end_session: drop the session, its chunks and its conversation
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..common.config import ChartQAConfig, load_config
from ..common.conversation import InMemoryConversationStore, build_hyde_context
from ..common.embedding_service import EmbeddingService
from ..common.llm_client import LLMClient
from ..common.schemas import SessionRecord
from ..common.session_store import create_session_store
from .orchestrator import RetrievalOrchestrator, RetrievalResponse
from .synthesizer import AnswerSynthesizer, SynthesizedAnswer

logger = logging.getLogger("chartqa.retriever.assistant")

# Generation temperatures
HYDE_TEMPERATURE = 0.3
ANSWER_TEMPERATURE = 0.1


@dataclass
class AssistantReply:
    """One answered question"""
    session_id: str
    question: str
    answer: SynthesizedAnswer
    retrieval: RetrievalResponse

    @property
    def text(self) -> str:
        return self.answer.answer

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "question": self.question,
            "answer": self.answer.answer,
            "used_llm": self.answer.used_llm,
            "retrieval": self.retrieval.to_dict(),
        }


class EncounterAssistant:
    """Ties the orchestrator, the synthesizer and conversation history together."""

    def __init__(
        self,
        orchestrator: RetrievalOrchestrator,
        synthesizer: AnswerSynthesizer,
        conversations: Optional[InMemoryConversationStore] = None,
        context_exchanges: int = 5,
    ):
        self.orchestrator = orchestrator
        self.synthesizer = synthesizer
        self.conversations = conversations or InMemoryConversationStore()
        self._context_exchanges = context_exchanges

    @classmethod
    def from_config(cls, config: Optional[ChartQAConfig] = None) -> "EncounterAssistant":
        config = config or load_config()

        embedding_service = EmbeddingService.from_config(config.embedding, config.llm)
        orchestrator = RetrievalOrchestrator(
            store=create_session_store(config.store),
            embedding_service=embedding_service,
            llm_client=LLMClient.from_config(config.llm, temperature=HYDE_TEMPERATURE),
            config=config.retrieval,
            max_tokens=config.llm.max_tokens,
        )
        synthesizer = AnswerSynthesizer(
            LLMClient.from_config(config.llm, temperature=ANSWER_TEMPERATURE),
            max_tokens=config.llm.max_tokens,
            timeout=config.llm.timeout,
        )
        return cls(
            orchestrator,
            synthesizer,
            context_exchanges=config.retrieval.context_exchanges,
        )

    async def start_session(
        self,
        transcript: str,
        note: str = "",
        session_id: Optional[str] = None,
    ) -> SessionRecord:
        session_id = session_id or str(uuid.uuid4())
        return await self.orchestrator.create_session(session_id, transcript, note)

    async def ask(self, session_id: str, question: str, k: Optional[int] = None) -> AssistantReply:
        """
        Answer a question about a session's encounter.

        Raises:
            SessionNotFoundError: unknown session
            SessionNotReadyError: ingestion still running
        """
        history = self.conversations.get_history(session_id)
        recent = self.conversations.get_recent_turns(session_id, self._context_exchanges)
        context = build_hyde_context(history, recent)

        retrieval = await self.orchestrator.retrieve(session_id, question, k=k, context=context)
        answer = await asyncio.to_thread(
            self.synthesizer.synthesize, question, retrieval, history, recent
        )

        self.conversations.add_interaction(session_id, question, answer.answer)
        logger.info(
            "Answered question for session %s (%s mode, %d passages)",
            session_id, retrieval.mode.value, len(retrieval.results),
        )
        return AssistantReply(
            session_id=session_id,
            question=question,
            answer=answer,
            retrieval=retrieval,
        )

    def end_session(self, session_id: str) -> bool:
        self.conversations.delete_session(session_id)
        return self.orchestrator.delete_session(session_id)
