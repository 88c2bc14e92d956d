"""Shared utilities for cleaning LLM responses."""

from __future__ import annotations

import json
import re

# Labels the prompts end with; models sometimes echo them back
_ANSWER_LABEL_RE = re.compile(
    r"^\s*(?:\*\*)?(?:reasoning|hypothetical answer|passage|answer)(?:\*\*)?\s*:(?:\*\*)?\s*",
    re.IGNORECASE,
)


def strip_code_fences(raw: str) -> str:
    """Remove delimiters a model wraps around a plain-text answer.

    Handles, in order:
    1. Markdown code fence lines (```, ```text, ...)
    2. An echoed prompt label ("REASONING:", "PASSAGE:", "Answer:")
    3. Matching quotes around the whole answer

    Returns an empty string when nothing usable remains.
    """
    if not raw:
        return ""

    text = raw.strip()
    if "```" in text:
        lines = text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        text = "\n".join(lines).strip()

    text = _ANSWER_LABEL_RE.sub("", text, count=1).strip()

    if len(text) >= 2 and text[0] == text[-1] and text[0] in ("\"", "'"):
        text = text[1:-1].strip()

    return text


def parse_llm_json(raw: str) -> dict:
    """Parse JSON from an LLM response, handling code fences and preamble text.

    Tries in order:
    1. Strip markdown code fences, then json.loads
    2. Extract substring between first '{' and last '}', then json.loads
    3. Return empty dict
    """
    if not raw:
        return {}

    text = raw
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [l for l in lines if not l.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass

    start = raw.find("{")
    end = raw.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            return json.loads(raw[start:end])
        except json.JSONDecodeError:
            pass

    return {}
