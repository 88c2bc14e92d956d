"""
Query Enhancer

Two-stage query enhancement (HyDE) for questions that embed poorly on their
own:

1. Reasoning: classify the question and work out what a matching passage
   would contain.
2. Synthesis: write a short hypothetical passage in clinical documentation
   style, conditioned on the reasoning.

Chunks are then scored against a blend of the query vector and the
hypothetical-passage vector. Each stage degrades on its own; only when
both fail, or scoring itself fails, does the enhancer fall back to
standard search.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from ..common.config import RetrievalConfig
from ..common.embedding_service import EmbeddingService
from ..common.errors import GenerationError
from ..common.llm_client import LLMClient
from ..common.llm_utils import parse_llm_json, strip_code_fences
from .query_processor import tokenize
from .searcher import CandidateChunk, RetrievalResult, Searcher, align_vectors

logger = logging.getLogger("chartqa.retriever.query_enhancer")

NO_CONTEXT = "No prior conversation."

REASONING_SYSTEM = (
    "You are a clinical AI assistant that plans retrieval over patient "
    "encounter transcripts and SOAP notes."
)

REASONING_PROMPT = """Analyze this question and work out what information should be retrieved to answer it.

Steps:
1. Question classification: what type of clinical question is this?
2. Information needs: what specific information would answer it?
3. Search strategy: which terms or concepts should be searched for?
4. Expected content: what would a good answer look like?

CONTEXT (if available):
{context}

USER QUESTION:
{question}

Return ONLY a JSON object with these keys:
{{"question_type": "...", "information_need": "...", "search_terms": ["..."], "expected_answer": "..."}}"""

HYPOTHETICAL_SYSTEM = (
    "You are a clinical AI assistant. You write passages that read like "
    "actual clinical documentation."
)

HYPOTHETICAL_PROMPT = """Write a passage that would answer the question below if it appeared in a patient transcript or SOAP note.

ANALYSIS OF THE QUESTION:
{reasoning}

USER QUESTION:
{question}

INSTRUCTIONS:
- Use clinical language and terminology
- Include specific details that would help with semantic search
- Keep it concise (2-3 sentences)
- Do not mention that the passage is hypothetical

PASSAGE:"""


@dataclass
class EnhancementTrace:
    """Intermediate text produced by the two generation stages"""
    reasoning: str = ""
    hypothetical_answer: str = ""
    reasoning_failed: bool = False
    synthesis_failed: bool = False

    @property
    def failed(self) -> bool:
        return self.reasoning_failed and self.synthesis_failed


@dataclass
class EnhancedSearchOutcome:
    """Ranked results plus the text that produced them"""
    results: List[RetrievalResult] = field(default_factory=list)
    reasoning: str = ""
    hypothetical_answer: str = ""
    used_fallback: bool = False


def format_reasoning(raw: str) -> str:
    """Render a JSON reasoning response as text; non-JSON text passes through"""
    data = parse_llm_json(raw)
    if not data:
        return strip_code_fences(raw)

    lines = []
    if data.get("question_type"):
        lines.append(f"Question type: {data['question_type']}")
    if data.get("information_need"):
        lines.append(f"Information needed: {data['information_need']}")
    terms = data.get("search_terms") or []
    if isinstance(terms, list) and terms:
        lines.append("Search terms: " + ", ".join(str(t) for t in terms))
    if data.get("expected_answer"):
        lines.append(f"Expected answer: {data['expected_answer']}")
    return "\n".join(lines) or strip_code_fences(raw)


class QueryEnhancer:
    """
    Reasoning + hypothetical-passage retrieval.

    Scoring per chunk:
        combined  = query_weight * sim(query) + hypothetical_weight * sim(hypothetical)
        keywords  = min(hits / len(query words + hypothetical words), 1)
        relevance = hyde_similarity_weight * combined + hyde_keyword_weight * keywords

    Chunks with combined <= hyde_threshold are dropped.
    """

    def __init__(
        self,
        llm_client: LLMClient,
        embedding_service: EmbeddingService,
        searcher: Searcher,
        config: Optional[RetrievalConfig] = None,
        max_tokens: int = 500,
    ):
        self._llm = llm_client
        self._embedding = embedding_service
        self._searcher = searcher
        self._config = config or RetrievalConfig()
        self._max_tokens = max_tokens

    async def _generate(self, prompt: str, system: str) -> str:
        """One bounded generation call; raises GenerationError on empty output"""
        timeout = self._config.call_timeout
        raw = await asyncio.wait_for(
            asyncio.to_thread(
                self._llm.generate,
                prompt,
                system=system,
                max_tokens=self._max_tokens,
                timeout=timeout,
            ),
            timeout=timeout,
        )
        if not strip_code_fences(raw):
            raise GenerationError("model returned an empty response")
        return raw

    async def _embed(self, text: str) -> List[float]:
        vectors = await self._embedding.embed_async([text], timeout=self._config.call_timeout)
        return vectors[0]

    async def generate_reasoning(self, query: str, context: str = "") -> str:
        """Reasoning text, or "" when generation fails"""
        prompt = REASONING_PROMPT.format(context=context or NO_CONTEXT, question=query)
        try:
            raw = await self._generate(prompt, REASONING_SYSTEM)
        except Exception as e:
            logger.warning("Reasoning stage failed: %s", e)
            return ""
        return format_reasoning(raw)

    async def _synthesize_passage(self, query: str, reasoning: str) -> Optional[str]:
        """Hypothetical passage, or None when generation fails"""
        prompt = HYPOTHETICAL_PROMPT.format(
            reasoning=reasoning or "Not available.",
            question=query,
        )
        try:
            raw = await self._generate(prompt, HYPOTHETICAL_SYSTEM)
        except Exception as e:
            logger.warning("Hypothetical answer stage failed: %s", e)
            return None
        return strip_code_fences(raw) or None

    async def generate_hypothetical_answer(self, query: str, reasoning: str = "") -> str:
        """Hypothetical passage, or the raw query when generation fails"""
        passage = await self._synthesize_passage(query, reasoning)
        return query if passage is None else passage

    async def enhance(self, query: str, context: str = "") -> EnhancementTrace:
        """Run both stages in order; the second consumes the first"""
        trace = EnhancementTrace()

        trace.reasoning = await self.generate_reasoning(query, context)
        trace.reasoning_failed = not trace.reasoning

        passage = await self._synthesize_passage(query, trace.reasoning)
        trace.synthesis_failed = passage is None
        trace.hypothetical_answer = query if passage is None else passage

        logger.debug(
            "Enhancement for %r: reasoning=%d chars, hypothetical=%r",
            query, len(trace.reasoning), trace.hypothetical_answer[:80],
        )
        return trace

    def keyword_coverage(self, query: str, hypothetical: str, text: str) -> float:
        """Share of query + hypothetical words (len > 2) present in text, capped at 1"""
        all_words = tokenize(query) + tokenize(hypothetical)
        if not all_words:
            return 0.0
        text_lower = text.lower()
        hits = sum(1 for word in all_words if len(word) > 2 and word in text_lower)
        return min(hits / len(all_words), 1.0)

    def score(
        self,
        query: str,
        hypothetical: str,
        query_vector: List[float],
        hypothetical_vector: List[float],
        chunks: Sequence[CandidateChunk],
        k: int,
    ) -> List[RetrievalResult]:
        """Blend, filter, rank and truncate"""
        cfg = self._config
        vectors = [c.vector for c in chunks]
        query_sims = self._embedding.batch_cosine_similarity(query_vector, vectors)
        hypo_sims = self._embedding.batch_cosine_similarity(hypothetical_vector, vectors)

        results = []
        for candidate, query_sim, hypo_sim in zip(chunks, query_sims, hypo_sims):
            combined = cfg.query_weight * query_sim + cfg.hypothetical_weight * hypo_sim
            if combined <= cfg.hyde_threshold:
                continue
            coverage = self.keyword_coverage(query, hypothetical, candidate.chunk.content)
            results.append(RetrievalResult(
                text=candidate.chunk.content,
                similarity=combined,
                relevance_score=(
                    cfg.hyde_similarity_weight * combined
                    + cfg.hyde_keyword_weight * coverage
                ),
                kind=candidate.chunk.kind,
                chunk_index=candidate.chunk.index,
                query_similarity=query_sim,
                hypothetical_similarity=hypo_sim,
            ))

        return sorted(results, key=lambda r: r.relevance_score, reverse=True)[:k]

    async def _same_space(
        self,
        query: str,
        hypothetical: str,
        query_vector: List[float],
        hypothetical_vector: List[float],
        chunks: Sequence[CandidateChunk],
    ) -> Tuple[List[float], List[float], List[CandidateChunk]]:
        """
        Bring query, hypothetical and chunk vectors into one embedding space.

        The backend can degrade between the query and the hypothetical
        embedding; everything is then re-embedded with the active backend.
        Raises ValueError if the dimensions still disagree.
        """
        dim = len(hypothetical_vector)
        if len(query_vector) == dim and all(len(c.vector) == dim for c in chunks):
            return query_vector, hypothetical_vector, list(chunks)

        logger.warning(
            "Embedding backend changed during enhancement (query dim %d, hypothetical dim %d), "
            "re-embedding with %s",
            len(query_vector), dim, self._embedding.provider,
        )
        timeout = self._config.call_timeout
        # One batch call keeps the pair in the same space
        query_vector, hypothetical_vector = await self._embedding.embed_async(
            [query, hypothetical], timeout=timeout,
        )
        query_vector, aligned = await align_vectors(
            self._embedding, query, query_vector, chunks, timeout=timeout,
        )
        if len(hypothetical_vector) != len(query_vector):
            hypothetical_vector = await self._embed(hypothetical)

        dim = len(query_vector)
        if len(hypothetical_vector) != dim or any(len(c.vector) != dim for c in aligned):
            raise ValueError("query, hypothetical and chunk vectors still differ in dimension")
        return query_vector, hypothetical_vector, aligned

    async def _fallback(
        self,
        query: str,
        chunks: Sequence[CandidateChunk],
        k: int,
        query_vector: Optional[List[float]],
        trace: EnhancementTrace,
    ) -> EnhancedSearchOutcome:
        if query_vector is None:
            query_vector = await self._embed(query)
        results = self._searcher.search(query, query_vector, chunks, k)
        return EnhancedSearchOutcome(
            results=results,
            reasoning=trace.reasoning,
            hypothetical_answer=trace.hypothetical_answer,
            used_fallback=True,
        )

    async def enhanced_search(
        self,
        query: str,
        chunks: Sequence[CandidateChunk],
        context: str = "",
        k: Optional[int] = None,
        query_vector: Optional[List[float]] = None,
    ) -> EnhancedSearchOutcome:
        """
        Enhanced retrieval for one query.

        Args:
            query: User question
            chunks: Candidate chunks with vectors in the active embedding space
            context: Conversation context for the reasoning stage
            k: Maximum number of results
            query_vector: Precomputed query embedding, if the caller has one

        Returns:
            EnhancedSearchOutcome; used_fallback is True when standard search
            produced the results
        """
        k = self._config.default_k if k is None else k
        if not chunks or k <= 0:
            return EnhancedSearchOutcome()

        trace = await self.enhance(query, context)
        if trace.failed:
            logger.info("Both enhancement stages failed, using standard search")
            return await self._fallback(query, chunks, k, query_vector, trace)

        try:
            if query_vector is None:
                query_vector, hypothetical_vector = await asyncio.gather(
                    self._embed(query),
                    self._embed(trace.hypothetical_answer),
                )
            else:
                hypothetical_vector = await self._embed(trace.hypothetical_answer)

            query_vector, hypothetical_vector, chunks = await self._same_space(
                query, trace.hypothetical_answer, query_vector, hypothetical_vector, chunks,
            )
            results = self.score(
                query, trace.hypothetical_answer,
                query_vector, hypothetical_vector,
                chunks, k,
            )
        except Exception as e:
            logger.warning("Enhanced scoring failed, using standard search: %s", e)
            return await self._fallback(query, chunks, k, query_vector, trace)

        logger.info("Enhanced search: %d of %d chunks relevant", len(results), len(chunks))
        return EnhancedSearchOutcome(
            results=results,
            reasoning=trace.reasoning,
            hypothetical_answer=trace.hypothetical_answer,
        )
