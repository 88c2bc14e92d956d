"""
Query Processor

Normalizes user questions and decides whether they go through query
enhancement (reasoning + hypothetical passage) before matching.

The enhancement switch favors recall: a false positive costs one extra pair
of generation calls, a false negative loses the accuracy gain on exactly the
elliptical follow-ups ("why?", "and the dose?") that need it most.
"""

import re
from dataclasses import dataclass, field
from typing import List

# Queries up to this many characters are treated as elliptical follow-ups
SHORT_QUERY_MAX_CHARS = 3

ENHANCEMENT_PATTERNS = [
    re.compile(r"\?$"),  # Questions
    re.compile(r"\b(what|how|why|when|where|which|who)\b", re.IGNORECASE),
    re.compile(
        r"\b(cause|reason|effect|side effect|complication|treatment|diagnosis)\b",
        re.IGNORECASE,
    ),
    re.compile(r"\b(symptom|condition|disease|illness|problem|issue)\b", re.IGNORECASE),
]

# Canonical domain terms for the relevance bonus
DOMAIN_TERMS = [
    "symptom", "pain", "medication", "diagnosis", "treatment",
    "patient", "doctor", "history", "examination", "assessment",
]


def tokenize(text: str) -> List[str]:
    """Lowercased whitespace tokens; punctuation stays attached"""
    return text.lower().split()


@dataclass
class ParsedQuery:
    """Parsed representation of a user query"""
    original: str
    cleaned: str
    words: List[str] = field(default_factory=list)
    needs_enhancement: bool = False

    @property
    def is_empty(self) -> bool:
        return not self.words


class QueryProcessor:
    """
    Processes questions about an encounter.

    Responsibilities:
    1. Clean and normalize query text
    2. Split into scoring words
    3. Decide whether query enhancement should run
    """

    def parse(self, query: str) -> ParsedQuery:
        cleaned = self._clean_query(query)
        return ParsedQuery(
            original=query,
            cleaned=cleaned,
            words=tokenize(query),
            needs_enhancement=self.should_enhance(cleaned),
        )

    def should_enhance(self, query: str) -> bool:
        """True for questions, clinical reasoning/state terms and very short queries"""
        text = query.strip()
        if len(text) <= SHORT_QUERY_MAX_CHARS:
            return True
        return any(pattern.search(text) for pattern in ENHANCEMENT_PATTERNS)

    def _clean_query(self, query: str) -> str:
        """Collapse whitespace and trim"""
        return re.sub(r"\s+", " ", query).strip()
