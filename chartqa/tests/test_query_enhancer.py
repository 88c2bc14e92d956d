"""Tests for reasoning + hypothetical-passage retrieval."""

import time

import pytest
from unittest.mock import Mock

from chartqa.common.config import RetrievalConfig
from chartqa.common.embedding_service import BackendSwitch, EmbeddingService
from chartqa.common.schemas import Chunk, ChunkKind
from chartqa.retriever.query_enhancer import QueryEnhancer, format_reasoning
from chartqa.retriever.searcher import CandidateChunk, Searcher

QUERY = "why?"
PASSAGE = "Lisinopril started for hypertension."
REASONING_JSON = (
    '{"question_type": "causal", "information_need": "reason for lisinopril", '
    '"search_terms": ["lisinopril", "hypertension"], "expected_answer": "started for BP"}'
)


class MappedEmbedding(EmbeddingService):
    """Returns fixed vectors per text; raises for texts listed in fail_on"""

    def __init__(self, mapping, fail_on=()):
        super().__init__(switch=BackendSwitch())
        self.mapping = mapping
        self.fail_on = set(fail_on)

    def embed(self, texts):
        for text in texts:
            if text in self.fail_on:
                raise RuntimeError(f"cannot embed {text!r}")
        return [self.mapping.get(text, [0.0, 0.0]) for text in texts]


def candidate(index, content, vector):
    return CandidateChunk(
        chunk=Chunk(session_id="s1", index=index, content=content, kind=ChunkKind.TRANSCRIPT),
        vector=vector,
    )


CHUNKS = [
    candidate(0, "DOCTOR: hello", [1.0, 0.0]),
    candidate(1, "Plan: lisinopril for hypertension.", [0.0, 1.0]),
    candidate(2, "PATIENT: fine", [0.6, 0.8]),
    candidate(3, "PATIENT: bye", [-1.0, 0.0]),
]


def make_enhancer(llm, embedding=None, config=None):
    embedding = embedding or MappedEmbedding({QUERY: [1.0, 0.0], PASSAGE: [0.0, 1.0]})
    config = config or RetrievalConfig()
    searcher = Searcher(embedding, similarity_threshold=config.similarity_threshold)
    return QueryEnhancer(llm, embedding, searcher, config=config)


def make_llm(*responses):
    llm = Mock()
    llm.generate.side_effect = list(responses)
    return llm


class TestFormatReasoning:
    def test_json_rendered_as_text(self):
        text = format_reasoning(REASONING_JSON)
        assert "Question type: causal" in text
        assert "Search terms: lisinopril, hypertension" in text

    def test_plain_text_passes_through(self):
        assert format_reasoning("```\nLook for the plan section.\n```") == "Look for the plan section."


class TestEnhance:
    @pytest.mark.asyncio
    async def test_reasoning_feeds_synthesis(self):
        llm = make_llm(REASONING_JSON, PASSAGE)
        enhancer = make_enhancer(llm)

        trace = await enhancer.enhance(QUERY, context="Recent conversation topics: medications.")

        assert trace.hypothetical_answer == PASSAGE
        assert not trace.failed
        reasoning_prompt = llm.generate.call_args_list[0].args[0]
        synthesis_prompt = llm.generate.call_args_list[1].args[0]
        assert "Recent conversation topics: medications." in reasoning_prompt
        assert "Question type: causal" in synthesis_prompt
        assert QUERY in synthesis_prompt

    @pytest.mark.asyncio
    async def test_missing_context_placeholder(self):
        llm = make_llm(REASONING_JSON, PASSAGE)
        await make_enhancer(llm).enhance(QUERY)
        assert "No prior conversation." in llm.generate.call_args_list[0].args[0]

    @pytest.mark.asyncio
    async def test_reasoning_failure_is_empty(self):
        llm = make_llm(RuntimeError("quota"), PASSAGE)
        trace = await make_enhancer(llm).enhance(QUERY)

        assert trace.reasoning == ""
        assert trace.reasoning_failed
        assert trace.hypothetical_answer == PASSAGE
        assert "Not available." in llm.generate.call_args_list[1].args[0]

    @pytest.mark.asyncio
    async def test_empty_synthesis_falls_back_to_query(self):
        llm = make_llm(REASONING_JSON, "```\n```")
        trace = await make_enhancer(llm).enhance(QUERY)

        assert trace.hypothetical_answer == QUERY
        assert trace.synthesis_failed
        assert not trace.failed

    @pytest.mark.asyncio
    async def test_fenced_synthesis_is_stripped(self):
        llm = make_llm(REASONING_JSON, f"```text\n{PASSAGE}\n```")
        trace = await make_enhancer(llm).enhance(QUERY)
        assert trace.hypothetical_answer == PASSAGE


class TestEnhancedSearch:
    @pytest.mark.asyncio
    async def test_blended_scoring(self):
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE))

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert not outcome.used_fallback
        assert outcome.hypothetical_answer == PASSAGE
        assert [r.chunk_index for r in outcome.results] == [1, 2, 0]

        by_index = {r.chunk_index: r for r in outcome.results}
        # combined = 0.3 * query_sim + 0.7 * hypothetical_sim
        assert by_index[0].similarity == pytest.approx(0.3)
        assert by_index[1].similarity == pytest.approx(0.7)
        assert by_index[2].similarity == pytest.approx(0.74)
        assert by_index[2].query_similarity == pytest.approx(0.6)
        assert by_index[2].hypothetical_similarity == pytest.approx(0.8)
        # chunk 1 holds "lisinopril", "for" and "hypertension." out of 5 words
        assert by_index[1].relevance_score == pytest.approx(0.7 * 0.7 + 0.3 * 0.6)
        assert by_index[0].relevance_score == pytest.approx(0.7 * 0.3)

    @pytest.mark.asyncio
    async def test_threshold_applies_to_blend(self):
        config = RetrievalConfig(hyde_threshold=0.5)
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE), config=config)

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert {r.chunk_index for r in outcome.results} == {1, 2}

    @pytest.mark.asyncio
    async def test_truncates_to_k(self):
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE))
        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=1)
        assert [r.chunk_index for r in outcome.results] == [1]

    @pytest.mark.asyncio
    async def test_both_stages_failing_uses_standard_search(self):
        llm = Mock()
        llm.generate.side_effect = RuntimeError("service down")
        enhancer = make_enhancer(llm)

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert outcome.used_fallback
        # standard search: raw similarity to [1, 0] above 0.3
        assert [r.chunk_index for r in outcome.results] == [0, 2]
        assert all(r.hypothetical_similarity is None for r in outcome.results)

    @pytest.mark.asyncio
    async def test_scoring_failure_uses_standard_search(self):
        embedding = MappedEmbedding({QUERY: [1.0, 0.0]}, fail_on=[PASSAGE])
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE), embedding=embedding)

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert outcome.used_fallback
        assert outcome.hypothetical_answer == PASSAGE
        assert [r.chunk_index for r in outcome.results] == [0, 2]

    @pytest.mark.asyncio
    async def test_generation_timeout_uses_standard_search(self):
        def slow_generate(*args, **kwargs):
            time.sleep(0.2)
            return PASSAGE

        llm = Mock()
        llm.generate.side_effect = slow_generate
        enhancer = make_enhancer(llm, config=RetrievalConfig(call_timeout=0.05))

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert outcome.used_fallback

    @pytest.mark.asyncio
    async def test_precomputed_query_vector_is_used(self):
        embedding = MappedEmbedding({PASSAGE: [0.0, 1.0]}, fail_on=[QUERY])
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE), embedding=embedding)

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4, query_vector=[1.0, 0.0])

        assert not outcome.used_fallback
        assert outcome.results[0].chunk_index == 1

    @pytest.mark.asyncio
    async def test_no_chunks_skips_generation(self):
        llm = make_llm(REASONING_JSON, PASSAGE)
        outcome = await make_enhancer(llm).enhanced_search(QUERY, [], k=4)

        assert outcome.results == []
        llm.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_echoed_question_is_not_a_synthesis_failure(self):
        question = "What medication was started for hypertension?"
        enhancer = make_enhancer(make_llm(REASONING_JSON, question))

        trace = await enhancer.enhance(question)

        assert trace.hypothetical_answer == question
        assert not trace.synthesis_failed


class TestBackendDegradeMidQuery:
    @pytest.fixture
    def remote(self):
        remote = Mock()
        remote.name = "google"
        remote.embed.side_effect = [[[0.6, 0.8, 0.0]], RuntimeError("429 quota")]
        return remote

    @pytest.mark.asyncio
    async def test_vectors_reembedded_in_local_space(self, remote):
        switch = BackendSwitch()
        embedding = EmbeddingService(remote=remote, switch=switch)
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE), embedding=embedding)
        query_vector = embedding.embed_single(QUERY)
        chunks = [
            candidate(0, "PATIENT: fine", [0.6, 0.8, 0.0]),
            candidate(1, PASSAGE, [0.6, 0.8, 0.0]),
        ]

        outcome = await enhancer.enhanced_search(QUERY, chunks, k=4, query_vector=query_vector)

        assert switch.is_degraded
        assert not outcome.used_fallback
        by_index = {r.chunk_index: r for r in outcome.results}
        assert by_index[1].hypothetical_similarity == pytest.approx(1.0)
        assert by_index[1].similarity > 0.7 - 1e-9
        # stored vectors are untouched
        assert chunks[1].vector == [0.6, 0.8, 0.0]

    @pytest.mark.asyncio
    async def test_unresolvable_dimensions_use_standard_search(self):
        embedding = MappedEmbedding({QUERY: [1.0, 0.0], PASSAGE: [0.0, 1.0, 0.0]})
        enhancer = make_enhancer(make_llm(REASONING_JSON, PASSAGE), embedding=embedding)

        outcome = await enhancer.enhanced_search(QUERY, CHUNKS, k=4)

        assert outcome.used_fallback
