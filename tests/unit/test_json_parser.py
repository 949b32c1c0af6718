from __future__ import annotations

import json

import pytest

from geoquest.ai.json_parser import extract_json_block, parse_json_with_fallback


def test_plain_json() -> None:
  assert parse_json_with_fallback('{"questions": []}') == {"questions": []}


def test_markdown_fences_are_stripped() -> None:
  assert parse_json_with_fallback('```json\n{"isValid": true}\n```') == {"isValid": True}


def test_prose_around_payload_is_ignored() -> None:
  raw = 'Here you go:\n{"isValid": false, "issues": ["a } inside a string"]}\nHope it helps.'
  assert parse_json_with_fallback(raw) == {"isValid": False, "issues": ["a } inside a string"]}


def test_trailing_commas_are_repaired() -> None:
  assert parse_json_with_fallback('Result: {"options": ["a", "b",],}') == {"options": ["a", "b"]}


def test_unrecoverable_output_raises() -> None:
  with pytest.raises(json.JSONDecodeError):
    parse_json_with_fallback("no json here")


def test_extract_json_block_handles_arrays_and_escapes() -> None:
  assert extract_json_block('x [1, {"a": "\\"]"}] y') == '[1, {"a": "\\"]"}]'
  assert extract_json_block("{unterminated") is None
