"""Tests for LLM response cleaning helpers."""

from chartqa.common.llm_utils import parse_llm_json, strip_code_fences


class TestStripCodeFences:
    def test_plain_text_unchanged(self):
        assert strip_code_fences("Patient reports chest pain.") == "Patient reports chest pain."

    def test_fenced_block(self):
        raw = "```text\nPatient reports chest pain.\n```"
        assert strip_code_fences(raw) == "Patient reports chest pain."

    def test_echoed_label_removed(self):
        assert strip_code_fences("HYPOTHETICAL ANSWER: BP 150/95.") == "BP 150/95."
        assert strip_code_fences("**Answer:** none") == "none"

    def test_wrapping_quotes_removed(self):
        assert strip_code_fences('"Started on lisinopril 10 mg."') == "Started on lisinopril 10 mg."

    def test_empty_inputs(self):
        assert strip_code_fences("") == ""
        assert strip_code_fences("```\n```") == ""
        assert strip_code_fences("   ") == ""


class TestParseLLMJson:
    def test_plain_json(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        assert parse_llm_json('```json\n{"a": 1}\n```') == {"a": 1}

    def test_json_with_preamble(self):
        assert parse_llm_json('Here you go: {"a": [1, 2]} done') == {"a": [1, 2]}

    def test_garbage_returns_empty(self):
        assert parse_llm_json("no json here") == {}
        assert parse_llm_json("") == {}
