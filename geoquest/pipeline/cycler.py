"""Provider ordering and rotation for generation and validation."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from geoquest.ai.providers.base import QuestionProvider
from geoquest.ai.providers.registry import ProviderRegistry
from geoquest.storage.feedback_repo import ProviderScore

logger = logging.getLogger(__name__)


class ProviderCycler:
  """A cached, ordered cycle of providers for one task run."""

  def __init__(self, providers: Iterable[QuestionProvider], *, preferred: str | None = None) -> None:
    self._providers: list[QuestionProvider] = list(providers)
    self._preferred = preferred.lower() if preferred else None
    self._cursor = 0

  @classmethod
  def for_generation(cls, registry: ProviderRegistry, preferred: str | None = None) -> ProviderCycler:
    return cls(registry.for_purpose("generation"), preferred=preferred)

  @classmethod
  def for_validation(cls, registry: ProviderRegistry, *, exclude: Iterable[str], scores: Mapping[str, ProviderScore] | None = None, preferred: str | None = None) -> ProviderCycler:
    """Validation pool: every validation provider except the generators, best-rated first.

    A preferred provider that is in the pool goes to the front.
    """

    excluded = {name.lower() for name in exclude}
    pool = [provider for provider in registry.for_purpose("validation") if provider.name.lower() not in excluded]
    scores = scores or {}
    order = {provider.name: index for index, provider in enumerate(pool)}

    def sort_key(provider: QuestionProvider) -> tuple[int, float, int]:
      score = scores.get(provider.name.lower())
      if score is None or score.count == 0:
        return (1, 0.0, order[provider.name])
      return (0, -score.avg_rating, order[provider.name])

    ordered = sorted(pool, key=sort_key)
    if preferred:
      ordered.sort(key=lambda provider: provider.name.lower() != preferred.lower())
    return cls(ordered)

  @property
  def names(self) -> list[str]:
    return [provider.name for provider in self._providers]

  def __len__(self) -> int:
    return len(self._providers)

  def __bool__(self) -> bool:
    return bool(self._providers)

  @property
  def preferred(self) -> QuestionProvider | None:
    if self._preferred is None:
      return None
    return next((provider for provider in self._providers if provider.name.lower() == self._preferred), None)

  def next_primary(self) -> QuestionProvider | None:
    """Preferred provider while it is in the cycle, otherwise round-robin."""

    if not self._providers:
      return None
    preferred = self.preferred
    if preferred is not None:
      return preferred
    provider = self._providers[self._cursor % len(self._providers)]
    self._cursor = (self._cursor + 1) % len(self._providers)
    return provider

  def fallbacks(self, primary: QuestionProvider) -> list[QuestionProvider]:
    """The rest of the cycle, starting after `primary`."""

    if primary not in self._providers:
      return list(self._providers)
    index = self._providers.index(primary)
    return self._providers[index + 1 :] + self._providers[:index]

  def current(self) -> QuestionProvider | None:
    return self._providers[0] if self._providers else None

  def drop(self, name: str) -> None:
    """Remove a provider from the cycle for the rest of the run."""

    before = len(self._providers)
    self._providers = [provider for provider in self._providers if provider.name.lower() != name.lower()]
    if len(self._providers) != before:
      logger.info("Provider %s removed from cycle (%d left)", name, len(self._providers))
    if self._providers:
      self._cursor %= len(self._providers)
    else:
      self._cursor = 0

  def advance(self) -> QuestionProvider | None:
    """Drop the current provider and return the next one."""

    current = self.current()
    if current is not None:
      self.drop(current.name)
    return self.current()
