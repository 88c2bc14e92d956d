"""
Chunk Indexer

Turns an encounter document into typed chunks plus one vector per chunk.
Vectors are computed in a single batched call; if that call fails the whole
index operation fails and nothing is returned for persistence.
"""

import logging
from dataclasses import dataclass
from typing import List

from ..common.embedding_service import EmbeddingService
from ..common.errors import IngestionError
from ..common.schemas import Chunk, EncounterDocument
from .chunker import ClinicalTextSplitter, classify_chunk

logger = logging.getLogger("chartqa.indexer.chunk_indexer")


@dataclass
class IndexedDocument:
    """Chunks and their vectors, aligned by position"""
    session_id: str
    chunks: List[Chunk]
    vectors: List[List[float]]
    total_length: int

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)


class ChunkIndexer:
    """
    Chunks and embeds encounter documents.

    Pipeline:
    1. Join transcript and SOAP note with the section separator
    2. Split recursively into ~chunk_size spans with chunk_overlap overlap
    3. Tag each span as transcript or note
    4. Embed all spans in one batch
    """

    def __init__(
        self,
        embedding_service: EmbeddingService,
        chunk_size: int = 800,
        chunk_overlap: int = 100,
    ):
        self._embedding = embedding_service
        self._splitter = ClinicalTextSplitter(chunk_size, chunk_overlap)

    def split(self, session_id: str, document: EncounterDocument) -> List[Chunk]:
        """Split the combined document text into typed chunks"""
        spans = self._splitter.split(document.combined_text)
        return [
            Chunk(
                session_id=session_id,
                index=i,
                content=span.text,
                kind=classify_chunk(span.text),
                start_index=span.start_index,
            )
            for i, span in enumerate(spans)
        ]

    def index(self, session_id: str, document: EncounterDocument) -> IndexedDocument:
        """
        Chunk and embed a document.

        Raises:
            IngestionError: chunking or batch embedding failed
        """
        combined = document.combined_text

        try:
            chunks = self.split(session_id, document)
            vectors = self._embedding.embed([chunk.content for chunk in chunks])
        except Exception as e:
            logger.error("Indexing failed for session %s: %s", session_id, e)
            raise IngestionError(session_id, str(e), cause=e) from e

        if len(vectors) != len(chunks):
            raise IngestionError(
                session_id,
                f"expected {len(chunks)} vectors, embedding backend returned {len(vectors)}",
            )

        logger.info(
            "Indexed session %s: %d chunks, %d characters",
            session_id, len(chunks), len(combined),
        )
        return IndexedDocument(
            session_id=session_id,
            chunks=chunks,
            vectors=vectors,
            total_length=len(combined),
        )
