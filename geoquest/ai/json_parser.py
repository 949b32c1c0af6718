"""Lenient JSON parsing for model output."""

from __future__ import annotations

import json
import re
from typing import Any

_FENCE_RE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def strip_json_fences(raw: str) -> str:
  return _FENCE_RE.sub("", raw.strip())


def parse_json_with_fallback(raw: str) -> Any:
  """Parse JSON, recovering from prose around the payload and trailing commas."""

  text = strip_json_fences(raw)
  try:
    return json.loads(text)
  except json.JSONDecodeError as exc:
    first_error = exc

  block = extract_json_block(text)
  if block is None:
    raise first_error

  for attempt in (block, _TRAILING_COMMA_RE.sub(r"\1", block)):
    try:
      return json.loads(attempt)
    except json.JSONDecodeError:
      continue
  raise first_error


def extract_json_block(raw: str) -> str | None:
  """Return the first balanced JSON object or array in `raw`."""

  start: int | None = None
  depth = 0
  in_string = False
  escaped = False
  for index, char in enumerate(raw):
    if start is None:
      if char in "{[":
        start, depth = index, 1
      continue
    if in_string:
      if escaped:
        escaped = False
      elif char == "\\":
        escaped = True
      elif char == '"':
        in_string = False
      continue
    if char == '"':
      in_string = True
    elif char in "{[":
      depth += 1
    elif char in "}]":
      depth -= 1
      if depth == 0:
        return raw[start : index + 1]
  return None
