"""Tests for insight/extractor.py — JSON recovery from model output."""

from __future__ import annotations

import json

import pytest

from insight.extractor import extract_json, iter_json_objects, strip_code_fences


class TestStripCodeFences:
    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_no_fence_untouched(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestIterJsonObjects:
    def test_two_concatenated_objects(self):
        assert list(iter_json_objects('{"a":1}{"b":2}')) == ['{"a":1}', '{"b":2}']

    def test_braces_inside_strings_ignored(self):
        text = 'x {"a": "}{", "b": {"c": 1}} y'
        assert list(iter_json_objects(text)) == ['{"a": "}{", "b": {"c": 1}}']

    def test_escaped_quote_inside_string(self):
        text = '{"a": "say \\"}\\" now"} tail'
        assert list(iter_json_objects(text)) == ['{"a": "say \\"}\\" now"}']

    def test_stray_quote_in_prose_does_not_hide_objects(self):
        text = 'He said "hello. {"a": 1}'
        assert list(iter_json_objects(text)) == ['{"a": 1}']

    def test_unbalanced_yields_nothing(self):
        assert list(iter_json_objects('{"a": 1')) == []


class TestExtractJson:
    @pytest.mark.parametrize(
        "value",
        [{"a": 1}, [1, 2, 3], {"nested": {"list": [True, None, 1.5]}}, "text", 0],
    )
    def test_clean_json_is_returned_as_is(self, value):
        assert extract_json(json.dumps(value)) == value

    def test_fenced_json(self):
        assert extract_json('```json\n{"isOutdated": true}\n```') == {"isOutdated": True}

    def test_last_object_wins(self):
        assert extract_json('{"a":1}{"b":2}') == {"b": 2}

    def test_first_object_when_preferred(self):
        assert extract_json('{"a":1}{"b":2}', prefer="first") == {"a": 1}

    def test_thought_then_answer_with_prose(self):
        text = (
            'Thinking: {"draft": "x"}\n'
            'Final answer below.\n'
            '{"status": "Current", "summary": "ok"}'
        )
        assert extract_json(text) == {"status": "Current", "summary": "ok"}

    def test_malformed_candidates_are_skipped(self):
        assert extract_json('{"a": } and {"b": 2}') == {"b": 2}

    def test_prose_around_single_object(self):
        assert extract_json('Sure! Here it is: {"name": "CVPR"} Hope this helps.') == {"name": "CVPR"}

    @pytest.mark.parametrize("text", ["", "   ", "not json at all", "{ broken", "}{", None])
    def test_garbage_returns_none(self, text):
        assert extract_json(text) is None
