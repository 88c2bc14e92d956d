"""
Indexer - Encounter Chunking and Embedding

Key Components:
- ClinicalTextSplitter: recursive, lossless, overlap-aware splitting
- ChunkIndexer: typed chunks plus one vector per chunk
"""

from .chunker import ClinicalTextSplitter, TextSpan, classify_chunk
from .chunk_indexer import ChunkIndexer, IndexedDocument

__all__ = [
    "ClinicalTextSplitter",
    "TextSpan",
    "classify_chunk",
    "ChunkIndexer",
    "IndexedDocument",
]
