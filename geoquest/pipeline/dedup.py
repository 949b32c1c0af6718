"""Near-duplicate filtering against the existing question corpus.

Every candidate is compared with every text in the snapshot, so one round costs
O(batch x corpus) edit-distance computations. That is fine for corpora in the
low thousands and batches of a few dozen; larger corpora need an index.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from geoquest.pipeline.contracts import Candidate

DEFAULT_SIMILARITY_THRESHOLD = 90.0

logger = logging.getLogger(__name__)


def _normalize(text: str) -> str:
  return text.strip().lower()


def levenshtein(a: str, b: str) -> int:
  """Return the edit distance between two strings."""

  if a == b:
    return 0
  if len(a) < len(b):
    a, b = b, a
  if not b:
    return len(a)

  previous = list(range(len(b) + 1))
  for i, char_a in enumerate(a, start=1):
    current = [i]
    for j, char_b in enumerate(b, start=1):
      cost = 0 if char_a == char_b else 1
      current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
    previous = current
  return previous[-1]


def similarity_percent(a: str, b: str) -> float:
  """Return case-insensitive similarity in percent (100 = identical)."""

  left, right = _normalize(a), _normalize(b)
  longest = max(len(left), len(right))
  if longest == 0:
    return 100.0
  return (1 - levenshtein(left, right) / longest) * 100


class CorpusSnapshot:
  """Working set of question texts seen during one task run."""

  def __init__(self, texts: Iterable[str] = ()) -> None:
    self._texts: list[str] = []
    self._normalized: set[str] = set()
    for text in texts:
      self.add(text)

  @classmethod
  def from_entries(cls, entries: Iterable[Mapping[str, str]]) -> CorpusSnapshot:
    return cls(entry["text"] for entry in entries if entry.get("text"))

  def copy(self) -> CorpusSnapshot:
    clone = CorpusSnapshot()
    clone._texts = list(self._texts)
    clone._normalized = set(self._normalized)
    return clone

  def add(self, text: str) -> None:
    self._texts.append(text)
    self._normalized.add(_normalize(text))

  def contains_exact(self, text: str) -> bool:
    return _normalize(text) in self._normalized

  def closest(self, text: str, threshold: float) -> tuple[float, str | None]:
    """Return the first snapshot text at or above the threshold, else the best score seen."""

    probe = _normalize(text)
    best_score, best_text = 0.0, None
    for existing in self._texts:
      existing_norm = _normalize(existing)
      shorter, longer = sorted((len(probe), len(existing_norm)))
      # Similarity can never exceed shorter/longer, so skip pairs that cannot reach the threshold.
      if longer and shorter / longer * 100 < threshold:
        continue
      score = similarity_percent(probe, existing_norm)
      if score >= threshold:
        return score, existing
      if score > best_score:
        best_score, best_text = score, existing
    return best_score, best_text

  def __len__(self) -> int:
    return len(self._texts)

  def __iter__(self):
    return iter(self._texts)


@dataclass(frozen=True)
class DedupOutcome:
  unique: list[Candidate]
  duplicate_count: int
  snapshot: CorpusSnapshot


def filter_duplicates(candidates: Iterable[Candidate], snapshot: CorpusSnapshot, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> DedupOutcome:
  """Drop candidates that match the snapshot or an earlier candidate in the batch."""

  working = snapshot.copy()
  unique: list[Candidate] = []
  duplicates = 0
  for candidate in candidates:
    if working.contains_exact(candidate.text):
      duplicates += 1
      logger.debug("Duplicate (exact) rejected: %s", candidate.text)
      continue

    score, match = working.closest(candidate.text, threshold)
    if score >= threshold:
      duplicates += 1
      logger.debug("Duplicate (%.1f%%) rejected: %s ~ %s", score, candidate.text, match)
      continue

    unique.append(candidate)
    working.add(candidate.text)

  return DedupOutcome(unique=unique, duplicate_count=duplicates, snapshot=working)
