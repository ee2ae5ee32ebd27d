"""JSON 提取测试。"""

from __future__ import annotations

import json

import pytest

from claude_code_provider.utils.json_extract import (
    EXTRACTION_INCOMPLETE_WARNING,
    EXTRACTION_INVALID_WARNING,
    extract_json,
    validate_json_extraction,
)


class TestExtractJson:
    """测试 extract_json。"""

    @pytest.mark.parametrize("text", [
        '{"a": 1}',
        '```json\n{"a": 1}\n```',
        '```\n{"a": 1}\n```',
        'Here you go: {"a": 1} hope it helps',
        'const result = {"a": 1};',
        '{"a": 1,}',
    ])
    def test_object_variants(self, text: str):
        assert json.loads(extract_json(text)) == {"a": 1}

    def test_array(self):
        assert json.loads(extract_json("result: [1, 2, 3]")) == [1, 2, 3]

    def test_pretty_printed(self):
        assert extract_json('{"a":1}') == '{\n  "a": 1\n}'

    def test_no_json_returns_original(self):
        assert extract_json("no json here") == "no json here"

    def test_unrecoverable_returns_original(self):
        text = '{"a": '
        assert extract_json(text) == text


class TestValidateJsonExtraction:
    """测试提取结果检查。"""

    def test_valid(self):
        assert validate_json_extraction("x", '{"a": 1}') is None

    def test_unchanged_invalid(self):
        assert validate_json_extraction("nope", "nope") == EXTRACTION_INCOMPLETE_WARNING

    def test_modified_invalid(self):
        assert validate_json_extraction("original", "{broken") == EXTRACTION_INVALID_WARNING
