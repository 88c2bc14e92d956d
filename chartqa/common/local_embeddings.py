"""
Local Embeddings

Deterministic text-to-vector feature extraction used when no remote
embedding backend is available. No network, no model weights: the vector is
computed from word statistics and clinical vocabulary coverage, so it keeps
some semantic discrimination between transcript passages.

Layout of the vector (FEATURE_DIM = 42):
    [0:20]   relative frequency of the 20 most frequent words (> 2 chars)
    [20:32]  clinical term coverage per category
    [32:38]  structural features
    [38:42]  semantic cue coverage per category
"""

import re
from typing import Dict, List

import numpy as np

TOP_WORDS = 20

# Clinical vocabulary, one coverage score per category
MEDICAL_TERMS: Dict[str, List[str]] = {
    # Symptoms
    "pain": ["pain", "ache", "hurt", "sore", "discomfort"],
    "cough": ["cough", "coughing", "hack"],
    "fever": ["fever", "temperature", "hot", "warm"],
    "fatigue": ["fatigue", "tired", "exhausted", "weak"],
    # Medications
    "medication": ["medication", "medicine", "drug", "prescription", "pill"],
    "dosage": ["dosage", "dose", "mg", "milligram"],
    # Body systems
    "cardiovascular": ["heart", "blood pressure", "pulse", "cardiac"],
    "respiratory": ["lung", "breath", "chest", "respiratory"],
    "neurological": ["head", "brain", "nerve", "neurological"],
    # Procedures
    "examination": ["exam", "examination", "check", "assess"],
    "diagnosis": ["diagnosis", "diagnose", "condition", "disease"],
    "treatment": ["treatment", "therapy", "cure", "heal"],
}

SEMANTIC_CUES: Dict[str, List[str]] = {
    "temporal": ["today", "yesterday", "week", "month", "year", "ago", "since"],
    "negation": ["no", "not", "never", "none", "denies", "negative"],
    "intensity": ["severe", "mild", "moderate", "extreme", "slight", "significant"],
    "certainty": ["definitely", "probably", "maybe", "possibly", "likely", "unlikely"],
}

# Vocabulary for the bag-of-words fallback vector
COMMON_WORDS = [
    "patient", "doctor", "medical", "symptom", "pain", "cough", "fever",
    "medication", "treatment", "diagnosis", "examination", "blood", "pressure",
    "heart", "rate", "temperature", "history", "physical", "assessment", "plan",
]

STRUCTURAL_FEATURES = 6
FEATURE_DIM = TOP_WORDS + len(MEDICAL_TERMS) + STRUCTURAL_FEATURES + len(SEMANTIC_CUES)

_NUMBER_RE = re.compile(r"\d+")
_CAPITAL_RE = re.compile(r"[A-Z]")
_SENTENCE_END_RE = re.compile(r"[.!?]+")
_PUNCTUATION_RE = re.compile(r"[^\w\s]")


def normalize_vector(vector: np.ndarray) -> np.ndarray:
    """Scale to unit length; a zero vector is returned unchanged."""
    magnitude = float(np.linalg.norm(vector))
    if magnitude > 0:
        return vector / magnitude
    return vector


def _words(text_lower: str) -> List[str]:
    return [w for w in text_lower.split() if len(w) > 2]


def word_frequency_features(text_lower: str) -> List[float]:
    """Relative frequency of the most frequent words, zero-padded to TOP_WORDS."""
    words = _words(text_lower)
    counts: Dict[str, int] = {}
    for word in words:
        counts[word] = counts.get(word, 0) + 1

    # Stable sort keeps first-seen order among equal counts
    top = sorted(counts.items(), key=lambda item: item[1], reverse=True)[:TOP_WORDS]
    features = [count / len(words) for _, count in top]
    return features + [0.0] * (TOP_WORDS - len(features))


def _coverage(text_lower: str, categories: Dict[str, List[str]]) -> List[float]:
    return [
        sum(1 for term in terms if term in text_lower) / len(terms)
        for terms in categories.values()
    ]


def medical_term_features(text_lower: str) -> List[float]:
    return _coverage(text_lower, MEDICAL_TERMS)


def semantic_features(text_lower: str) -> List[float]:
    return _coverage(text_lower, SEMANTIC_CUES)


def structural_features(text: str) -> List[float]:
    """Length, sentence, question, number, capital and punctuation statistics."""
    length = len(text)
    if length == 0:
        return [0.0] * STRUCTURAL_FEATURES
    return [
        min(length / 1000, 1.0),
        len(_SENTENCE_END_RE.findall(text)) / 10,
        text.count("?") / 5,
        len(_NUMBER_RE.findall(text)) / 10,
        len(_CAPITAL_RE.findall(text)) / length,
        len(_PUNCTUATION_RE.findall(text)) / length,
    ]


def simple_word_vector(text: str) -> np.ndarray:
    """Bag-of-domain-words fallback, padded to FEATURE_DIM."""
    text_lower = text.lower()
    words = _words(text_lower)
    word_set = set(words)

    vector = [1.0 if word in word_set else 0.0 for word in COMMON_WORDS]
    vector.append(len(words) / 50)
    vector.append(len(_NUMBER_RE.findall(text)) / 10)
    vector.append(len(_CAPITAL_RE.findall(text)) / len(text) if text else 0.0)
    vector.extend([0.0] * (FEATURE_DIM - len(vector)))

    return normalize_vector(np.array(vector, dtype=float))


def text_to_vector(text: str) -> np.ndarray:
    """Convert text to a unit-length feature vector of FEATURE_DIM floats."""
    text_lower = text.lower()

    features = (
        word_frequency_features(text_lower)
        + medical_term_features(text_lower)
        + structural_features(text)
        + semantic_features(text_lower)
    )
    vector = np.array(features, dtype=float)

    if vector.size == 0 or not vector.any():
        return simple_word_vector(text)

    return normalize_vector(vector)


class LocalEmbeddingStrategy:
    """Deterministic on-device strategy; never raises for string input."""

    name = "local"
    dimension = FEATURE_DIM

    def embed(self, texts: List[str]) -> List[List[float]]:
        return [text_to_vector(text).tolist() for text in texts]
