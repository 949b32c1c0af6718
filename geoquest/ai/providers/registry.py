"""Registry of configured question providers."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from geoquest.ai.providers.base import QuestionProvider
from geoquest.config import PROVIDER_PURPOSES, ProviderSettings, Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
  """Providers keyed by lowercase name, in configuration order, with their purposes."""

  def __init__(self, entries: Iterable[tuple[QuestionProvider, Iterable[str]]] = ()) -> None:
    self._providers: dict[str, QuestionProvider] = {}
    self._purposes: dict[str, frozenset[str]] = {}
    for provider, purposes in entries:
      self.register(provider, purposes)

  def register(self, provider: QuestionProvider, purposes: Iterable[str] = PROVIDER_PURPOSES) -> None:
    key = provider.name.lower()
    self._providers[key] = provider
    self._purposes[key] = frozenset(purposes)

  def get(self, name: str) -> QuestionProvider | None:
    return self._providers.get(name.lower())

  @property
  def names(self) -> list[str]:
    return list(self._providers)

  def for_purpose(self, purpose: str) -> list[QuestionProvider]:
    return [provider for key, provider in self._providers.items() if purpose in self._purposes[key]]

  def __len__(self) -> int:
    return len(self._providers)


def build_provider(settings: ProviderSettings) -> QuestionProvider:
  if settings.name == "gemini":
    from geoquest.ai.providers.gemini import GeminiQuestionProvider

    return GeminiQuestionProvider(api_key=settings.api_key, model_name=settings.model, max_items_per_request=settings.max_items_per_request)

  from geoquest.ai.providers.openai_compatible import OpenAICompatibleQuestionProvider

  return OpenAICompatibleQuestionProvider(name=settings.name, api_key=settings.api_key, model_name=settings.model, max_items_per_request=settings.max_items_per_request, base_url=settings.base_url)


def build_provider_registry(settings: Settings) -> ProviderRegistry:
  """Instantiate every provider that has credentials."""

  registry = ProviderRegistry()
  for provider_settings in settings.providers:
    try:
      registry.register(build_provider(provider_settings), provider_settings.purposes)
    except ValueError as exc:
      logger.warning("Skipping provider %s: %s", provider_settings.name, exc)
  logger.info("Configured providers: %s", ", ".join(registry.names) or "none")
  return registry
