"""
Synthesizer

Answer generation from retrieved passages (indexed mode) or from the whole
document (full-context mode).

Falls back to a plain listing of the passages when no model is configured
or generation fails. An indexed query with no passages gets a fixed
not-found message and never reaches the model.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..common.conversation import Turn, format_chat_history, summarize_conversation
from ..common.llm_client import LLMClient
from ..common.llm_utils import strip_code_fences
from ..common.schemas import RetrievalMode
from .orchestrator import RetrievalResponse
from .searcher import RetrievalResult

logger = logging.getLogger("chartqa.retriever.synthesizer")

NOT_FOUND_MESSAGE = (
    "I couldn't find relevant information in the transcript to answer your "
    "question. Please clarify or ask about a different aspect of the patient's case."
)

MISSING_INFO_MESSAGE = "This specific information is not mentioned in the transcript."

CHUNK_DIVIDER = "\n\n---\n\n"

SYSTEM_PROMPT = (
    "You are a clinical AI assistant supporting healthcare providers by analyzing "
    "patient encounter transcripts and SOAP notes. You are speaking to a healthcare "
    "provider about a patient's case, so always refer to the patient in the third person."
)

INDEXED_PROMPT = """PATIENT CONTEXT (retrieved passages):
{context}

CONVERSATION SUMMARY:
{summary}

RECENT CONVERSATION:
{chat_history}

USER QUESTION:
{question}

REASONING INSTRUCTIONS:
1. Resolve pronouns and vague references to the most likely referent.
2. Identify whether the user is asking about symptoms, causes, medications, side effects, or complications.
3. Infer intent if the question is short or ambiguous.
4. Prioritize recent conversation over older exchanges.
5. If information is missing, say "{missing}"

ANSWER GUIDELINES:
- Distinguish between disease symptoms, medication side effects and other clinical observations.
- Be concise, specific and clinically appropriate.
- Do not mention transcripts, prompts or retrieval mechanics.
- Refer to the patient in the third person ("The patient...").

Answer:"""

FULL_CONTEXT_PROMPT = """PATIENT CONTEXT (full transcript):
{transcript}

SOAP NOTE:
{note}

CONVERSATION SUMMARY:
{summary}

RECENT CONVERSATION:
{chat_history}

USER QUESTION:
{question}

REASONING INSTRUCTIONS:
1. Resolve pronouns and vague references (e.g., "it", "this", "they").
2. Determine if the question is about symptoms, causes, medications, side effects, or complications.
3. Infer intent if the question is short or ambiguous.
4. Prioritize the most recent messages.
5. If data is missing, respond "{missing}"

ANSWER GUIDELINES:
- Clearly differentiate between disease symptoms and medication side effects.
- Be concise, specific and clinically appropriate.
- Do not reference transcripts, prompts or retrieval mechanics in your answer.
- Refer to the patient in the third person ("The patient...").

Answer:"""

FALLBACK_TEMPLATE = """## Passages for: "{question}"

Found {count} relevant passage(s):

{formatted_results}

---
**Note**: This is a direct listing without answer generation.
Configure GOOGLE_API_KEY (or another provider key) for natural language answers.
"""


@dataclass
class SynthesizedAnswer:
    """Answer text plus the passages it was built from"""
    answer: str
    sources: List[Dict[str, Any]] = field(default_factory=list)
    used_llm: bool = False
    warnings: List[str] = field(default_factory=list)


def format_passages(results: List[RetrievalResult]) -> str:
    """[Chunk n] blocks separated by dividers, in ranked order"""
    return CHUNK_DIVIDER.join(f"[Chunk {i}] {r.text}" for i, r in enumerate(results, 1))


class AnswerSynthesizer:
    """
    Builds the final answer for a retrieval response.

    Modes:
    - FULL_CONTEXT: transcript and note go into the prompt verbatim
    - INDEXED: ranked passages go into the prompt as [Chunk n] blocks
    """

    def __init__(
        self,
        llm_client: Optional[LLMClient] = None,
        max_tokens: int = 500,
        timeout: float = 30.0,
    ):
        self._llm = llm_client
        self._max_tokens = max_tokens
        self._timeout = timeout

    @property
    def has_llm(self) -> bool:
        return self._llm is not None and self._llm.is_available

    def build_prompt(
        self,
        question: str,
        retrieval: RetrievalResponse,
        history: List[Turn],
        recent: List[Turn],
    ) -> str:
        summary = summarize_conversation(history)
        chat_history = format_chat_history(recent)

        if retrieval.mode == RetrievalMode.FULL_CONTEXT and retrieval.document is not None:
            return FULL_CONTEXT_PROMPT.format(
                transcript=retrieval.document.transcript,
                note=retrieval.document.note or "No SOAP note available",
                summary=summary,
                chat_history=chat_history,
                question=question,
                missing=MISSING_INFO_MESSAGE,
            )

        return INDEXED_PROMPT.format(
            context=format_passages(retrieval.results),
            summary=summary,
            chat_history=chat_history,
            question=question,
            missing=MISSING_INFO_MESSAGE,
        )

    def synthesize(
        self,
        question: str,
        retrieval: RetrievalResponse,
        history: Optional[List[Turn]] = None,
        recent: Optional[List[Turn]] = None,
    ) -> SynthesizedAnswer:
        """
        Answer a question from a retrieval response.

        Args:
            question: User question
            retrieval: Output of RetrievalOrchestrator.retrieve
            history: Full conversation history for the session
            recent: Most recent turns

        Returns:
            SynthesizedAnswer
        """
        if not retrieval.found:
            return SynthesizedAnswer(
                answer=NOT_FOUND_MESSAGE,
                warnings=["No relevant passages found"],
            )

        sources = [r.to_dict() for r in retrieval.results]

        if self.has_llm:
            prompt = self.build_prompt(question, retrieval, history or [], recent or [])
            try:
                answer = strip_code_fences(self._llm.generate(
                    prompt,
                    system=SYSTEM_PROMPT,
                    max_tokens=self._max_tokens,
                    timeout=self._timeout,
                ))
                if answer:
                    return SynthesizedAnswer(answer=answer, sources=sources, used_llm=True)
                logger.warning("Answer generation returned an empty response")
            except Exception as e:
                logger.warning("Answer generation failed: %s", e)

        return self._synthesize_fallback(question, retrieval, sources)

    def _synthesize_fallback(
        self,
        question: str,
        retrieval: RetrievalResponse,
        sources: List[Dict[str, Any]],
    ) -> SynthesizedAnswer:
        """Listing without a model"""
        if retrieval.mode == RetrievalMode.FULL_CONTEXT:
            results_text = (retrieval.document_text or "")[:1500]
            count = 1
        else:
            formatted = []
            for i, r in enumerate(retrieval.results, 1):
                excerpt = r.text[:500] + ("..." if len(r.text) > 500 else "")
                formatted.append(
                    f"### {i}. {r.kind.value} chunk {r.chunk_index} "
                    f"(score {r.relevance_score:.2f})\n\n{excerpt}\n"
                )
            results_text = "\n".join(formatted)
            count = len(retrieval.results)

        return SynthesizedAnswer(
            answer=FALLBACK_TEMPLATE.format(
                question=question,
                count=count,
                formatted_results=results_text,
            ),
            sources=sources,
            warnings=["LLM not available - showing raw passages"],
        )
