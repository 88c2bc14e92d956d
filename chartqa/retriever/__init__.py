"""
Retriever - Encounter Question Answering

Finds the passages of an encounter that answer a question and turns them
into an answer.

Key Components:
- QueryProcessor: Normalizes queries and decides on query enhancement
- Searcher: Similarity search with keyword and domain-term bonuses
- QueryEnhancer: Reasoning + hypothetical-passage retrieval
- RetrievalOrchestrator: Session modes, ingestion and query routing
- AnswerSynthesizer: LLM answers with a plain-listing fallback
- EncounterAssistant: Sessions, conversation history and answers

Pipeline:
1. Short documents: hand the whole document to the model
2. Long documents: chunk and embed once at session creation
3. Per question: enhanced or standard search over the session's chunks
4. Synthesize the answer from the ranked passages
"""

from .query_processor import QueryProcessor, ParsedQuery
from .searcher import Searcher, RetrievalResult, CandidateChunk
from .query_enhancer import QueryEnhancer, EnhancedSearchOutcome, EnhancementTrace
from .orchestrator import RetrievalOrchestrator, RetrievalResponse
from .synthesizer import AnswerSynthesizer, SynthesizedAnswer, NOT_FOUND_MESSAGE
from .assistant import EncounterAssistant, AssistantReply

__all__ = [
    "QueryProcessor",
    "ParsedQuery",
    "Searcher",
    "RetrievalResult",
    "CandidateChunk",
    "QueryEnhancer",
    "EnhancedSearchOutcome",
    "EnhancementTrace",
    "RetrievalOrchestrator",
    "RetrievalResponse",
    "AnswerSynthesizer",
    "SynthesizedAnswer",
    "NOT_FOUND_MESSAGE",
    "EncounterAssistant",
    "AssistantReply",
]
