"""Tests for LLM reply to JSON conversion."""

import pytest

from codebase_insights.llm.errors import BadResponseContentLlmError
from codebase_insights.llm.json_tools import convert_text_to_json


class TestConvertTextToJson:
    def test_plain_object(self):
        assert convert_text_to_json('{"a": 1}') == {"a": 1}

    def test_plain_array(self):
        assert convert_text_to_json("[1, 2, 3]") == [1, 2, 3]

    def test_fenced_block(self):
        text = 'Here you go:\n```json\n{"summary": "parses config"}\n```\nAnything else?'
        assert convert_text_to_json(text) == {"summary": "parses config"}

    def test_leading_chatter(self):
        assert convert_text_to_json('The answer is {"ok": true} as requested.') == {"ok": True}

    def test_skips_broken_brace(self):
        assert convert_text_to_json('Use {braces} like {"key": "value"}') == {"key": "value"}

    @pytest.mark.parametrize("text", ["no json at all", "{not: valid", ""])
    def test_invalid(self, text):
        with pytest.raises(BadResponseContentLlmError):
            convert_text_to_json(text)

    def test_not_a_string(self):
        with pytest.raises(BadResponseContentLlmError):
            convert_text_to_json(None)
