from __future__ import annotations

import logging.handlers
import sys
from pathlib import Path

from geoquest.core.logging import TruncatedFormatter, _build_handlers, _rotated_name
from tests.fakes import make_settings


def test_handlers_write_to_a_fresh_log_file(tmp_path: Path) -> None:
  stream, file_handler, log_path = _build_handlers(make_settings(log_max_bytes=2048, log_backup_count=2), tmp_path)
  try:
    assert log_path.parent == tmp_path
    assert log_path.name.startswith("geoquest_")
    assert isinstance(file_handler, logging.handlers.RotatingFileHandler)
    assert file_handler.maxBytes == 2048
    assert file_handler.backupCount == 2
    assert isinstance(stream.formatter, TruncatedFormatter)
  finally:
    file_handler.close()


def test_rotated_files_keep_the_log_suffix_readable() -> None:
  assert _rotated_name("logs/geoquest.log.3") == "logs/geoquest.log-3"
  assert _rotated_name("logs/geoquest.log") == "logs/geoquest.log"


def _deep_traceback(depth: int):
  def recurse(level: int) -> None:
    if level == 0:
      raise ValueError("provider exploded")
    recurse(level - 1)

  try:
    recurse(depth)
  except ValueError:
    return sys.exc_info()
  raise AssertionError("expected ValueError")


def test_long_tracebacks_keep_head_and_tail() -> None:
  formatted = TruncatedFormatter().formatException(_deep_traceback(10))

  assert formatted.startswith("Traceback (most recent call last):")
  assert "    ...\n" in formatted
  assert formatted.rstrip().endswith("ValueError: provider exploded")
