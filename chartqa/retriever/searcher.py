"""
Searcher

Similarity search over one session's chunks.

Relevance score = cosine similarity + keyword bonus + domain bonus:
- keyword bonus: share of query words found verbatim in the chunk text
- domain bonus: share of query words overlapping a canonical domain term

Chunks at or below the similarity threshold are dropped before the bonuses
are applied; survivors are ranked by relevance score.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..common.embedding_service import EmbeddingService
from ..common.schemas import Chunk, ChunkKind, ChunkRecord
from .query_processor import DOMAIN_TERMS, tokenize

logger = logging.getLogger("chartqa.retriever.searcher")


@dataclass
class RetrievalResult:
    """A single ranked passage"""
    text: str
    similarity: float
    relevance_score: float
    kind: ChunkKind
    chunk_index: int
    # Set on the enhanced path only
    query_similarity: Optional[float] = None
    hypothetical_similarity: Optional[float] = None

    @property
    def metadata(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "chunk_index": self.chunk_index}

    def to_dict(self) -> Dict[str, Any]:
        """Shape handed to the answer-generation step"""
        return {
            "text": self.text,
            "relevance_score": self.relevance_score,
            "kind": self.kind.value,
            "chunk_index": self.chunk_index,
        }


@dataclass
class CandidateChunk:
    """A chunk with the vector it is scored against"""
    chunk: Chunk
    vector: List[float] = field(repr=False)

    @classmethod
    def from_record(cls, record: ChunkRecord) -> "CandidateChunk":
        return cls(chunk=record.to_chunk(), vector=record.vector)


def keyword_bonus(words: List[str], text: str, weight: float = 0.2) -> float:
    """weight * (query words found verbatim in text) / (query word count)"""
    if not words:
        return 0.0
    text_lower = text.lower()
    exact_matches = sum(1 for word in words if word in text_lower)
    return weight * exact_matches / len(words)


def domain_bonus(words: List[str], weight: float = 0.3) -> float:
    """weight * (query words contained in, or containing, a domain term) / (query word count)"""
    if not words:
        return 0.0
    domain_matches = sum(
        1 for word in words
        if any(term in word or word in term for term in DOMAIN_TERMS)
    )
    return weight * domain_matches / len(words)


async def align_vectors(
    embedding_service: EmbeddingService,
    query: str,
    query_vector: List[float],
    candidates: Sequence[CandidateChunk],
    timeout: Optional[float] = None,
) -> Tuple[List[float], List[CandidateChunk]]:
    """
    Re-embed chunks whose vector does not match the query's dimension.

    Stored rows are left untouched. If the backend degrades during the
    re-embed, the query is embedded again so both sides share a space.
    The switch is one-way, so two passes always settle.
    """
    candidates = list(candidates)
    for _ in range(2):
        stale = [c for c in candidates if len(c.vector) != len(query_vector)]
        if not stale:
            break

        logger.warning(
            "%d stored vectors do not match the active %s embeddings (dim %d), re-embedding",
            len(stale), embedding_service.provider, len(query_vector),
        )
        fresh = await embedding_service.embed_async(
            [c.chunk.content for c in stale], timeout=timeout,
        )
        replacements = {c.chunk.index: v for c, v in zip(stale, fresh)}
        candidates = [
            CandidateChunk(c.chunk, replacements.get(c.chunk.index, c.vector))
            for c in candidates
        ]
        if fresh and len(fresh[0]) != len(query_vector):
            query_vector = (await embedding_service.embed_async([query], timeout=timeout))[0]

    return query_vector, candidates


class Searcher:
    """
    Ranks chunks against a query vector.

    Features:
    - Batch cosine similarity
    - Threshold filtering on raw similarity
    - Keyword and domain-term bonuses
    - Top-k truncation (ties keep chunk order)
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        similarity_threshold: float = 0.3,
        default_k: int = 4,
        keyword_bonus_weight: float = 0.2,
        domain_bonus_weight: float = 0.3,
    ):
        self._embedding = embedding_service
        self._threshold = similarity_threshold
        self._default_k = default_k
        self._keyword_weight = keyword_bonus_weight
        self._domain_weight = domain_bonus_weight

    @property
    def threshold(self) -> float:
        return self._threshold

    def relevance_score(self, query: str, text: str, similarity: float) -> float:
        words = tokenize(query)
        return (
            similarity
            + keyword_bonus(words, text, self._keyword_weight)
            + domain_bonus(words, self._domain_weight)
        )

    def search(
        self,
        query: str,
        query_vector: List[float],
        chunks: Sequence[CandidateChunk],
        k: Optional[int] = None,
        threshold: Optional[float] = None,
    ) -> List[RetrievalResult]:
        """
        Rank chunks for a query.

        Args:
            query: Raw query text (used for the bonuses)
            query_vector: Embedding of the query
            chunks: Candidate chunks with their vectors
            k: Maximum number of results (default from config)
            threshold: Minimum raw similarity, exclusive (default from config)

        Returns:
            Results sorted by relevance_score, descending, at most k long
        """
        k = self._default_k if k is None else k
        threshold = self._threshold if threshold is None else threshold
        if not chunks or k <= 0:
            return []

        similarities = self._embedding.batch_cosine_similarity(
            query_vector, [c.vector for c in chunks]
        )

        results = [
            RetrievalResult(
                text=candidate.chunk.content,
                similarity=similarity,
                relevance_score=self.relevance_score(query, candidate.chunk.content, similarity),
                kind=candidate.chunk.kind,
                chunk_index=candidate.chunk.index,
            )
            for candidate, similarity in zip(chunks, similarities)
            if similarity > threshold
        ]

        # sorted() is stable with reverse=True: equal scores keep chunk order
        results = sorted(results, key=lambda r: r.relevance_score, reverse=True)[:k]

        logger.info("Standard search: %d of %d chunks relevant", len(results), len(chunks))
        return results

    def standard_search(
        self,
        query: str,
        chunks: Sequence[CandidateChunk],
        k: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Embed the query, then search"""
        query_vector = self._embedding.embed_single(query)
        return self.search(query, query_vector, chunks, k)
