"""
ChartQA

Question answering over a clinical encounter record (conversation transcript
plus the SOAP note derived from it).

Philosophy:
- Short encounters are sent to the model whole; long ones are chunked and indexed
- Retrieval keeps working when the paid embedding backend is gone
- Ambiguous questions are rewritten into a hypothetical chart passage before matching

Usage:
    from chartqa.common import load_config, EmbeddingService, LLMClient
    from chartqa.indexer import ChunkIndexer
    from chartqa.retriever import RetrievalOrchestrator, EncounterAssistant
"""

__version__ = "0.1.0"
