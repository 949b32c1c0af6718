from __future__ import annotations

from typing import Any

import pytest

from geoquest.ai import prompts
from geoquest.ai.providers.base import LLMQuestionProvider
from geoquest.ai.providers.registry import build_provider_registry
from geoquest.config import ProviderSettings
from geoquest.pipeline.contracts import GenerationCriteria
from tests.fakes import make_item, make_settings

CRITERIA = GenerationCriteria(amount=3, age_group="children", target_audience="swedes", category="geografi")


def _raw_question(text: str, **overrides: Any) -> dict[str, Any]:
  raw = {
    "question_sv": text,
    "question_en": "In English?",
    "options_sv": ["Vänern", "Vättern", "Mälaren", "Hjälmaren"],
    "options_en": ["Vanern", "Vattern", "Malaren", "Hjalmaren"],
    "correctOption": 0,
    "explanation_sv": "Vänern är störst.",
  }
  raw.update(overrides)
  return raw


class CannedProvider(LLMQuestionProvider):
  """Answers every prompt with the next queued payload."""

  def __init__(self, *responses: Any, ping_error: Exception | None = None) -> None:
    super().__init__(name="canned", model_name="canned-1", max_items_per_request=5)
    self.responses = list(responses)
    self.prompts: list[tuple[str, dict[str, Any]]] = []
    self.ping_error = ping_error

  async def complete_json(self, prompt: str, schema: dict[str, Any]) -> Any:
    self.prompts.append((prompt, schema))
    return self.responses.pop(0)

  async def ping(self) -> None:
    if self.ping_error is not None:
      raise self.ping_error


@pytest.mark.anyio
async def test_generate_maps_fields_and_drops_malformed_entries() -> None:
  """Entries with bad shape are skipped rather than failing the whole batch."""
  provider = CannedProvider(
    {
      "questions": [
        _raw_question("Vilken är Sveriges största sjö?", timeSensitive=False, emoji="🌊"),
        _raw_question("Kort?"),
        _raw_question("Vilken sjö har bara tre svar?", options_sv=["a", "b", "c"]),
        "not an object",
        _raw_question("Vilken sjö saknar rätt svar?", correctOption=None),
      ]
    }
  )

  candidates = await provider.generate(3, CRITERIA, "GUIDANCE TEXT")

  assert [candidate.text for candidate in candidates] == ["Vilken är Sveriges största sjö?"]
  candidate = candidates[0]
  assert candidate.options_en == ["Vanern", "Vattern", "Malaren", "Hjalmaren"]
  assert candidate.age_groups == ["children"]
  assert candidate.target_audience == "swedes"
  assert candidate.time_sensitive is False
  assert candidate.provenance.provider == "canned"
  assert candidate.provenance.model == "canned-1"
  prompt, schema = provider.prompts[0]
  assert "GUIDANCE TEXT" in prompt
  assert schema is prompts.GENERATION_SCHEMA


@pytest.mark.anyio
async def test_generate_accepts_bare_list_and_caps_amount() -> None:
  provider = CannedProvider([_raw_question(f"Vilken sjö är nummer {index} i storlek?") for index in range(4)])

  candidates = await provider.generate(2, CRITERIA)

  assert len(candidates) == 2


@pytest.mark.anyio
async def test_generate_without_question_list_raises() -> None:
  with pytest.raises(ValueError):
    await CannedProvider({"message": "sorry"}).generate(1, CRITERIA)


@pytest.mark.anyio
async def test_validate_reads_verdict() -> None:
  provider = CannedProvider({"isValid": False, "issues": ["Fel svar", None], "suggestions": ["Byt svar"], "timeSensitive": True, "bestBeforeDate": "2026-12-31"})

  verdict = await provider.validate(make_item("Vilken är Sveriges största sjö?"), CRITERIA)

  assert not verdict.is_valid
  assert verdict.issues == ["Fel svar"]
  assert verdict.suggestions == ["Byt svar"]
  assert verdict.time_sensitive is True
  assert verdict.best_before_date == "2026-12-31"


@pytest.mark.anyio
async def test_validate_rejects_unreadable_verdict() -> None:
  with pytest.raises(ValueError):
    await CannedProvider({"isValid": "yes"}).validate(make_item("Vilken är Sveriges största sjö?"), None)


@pytest.mark.anyio
async def test_propose_edits_keeps_only_given_fields() -> None:
  provider = CannedProvider({"proposedEdits": {"question_sv": "Vilken svensk sjö är störst till ytan?", "correctOption": 1}})

  edits = await provider.propose_edits(make_item("Vilken är Sveriges största sjö?"), CRITERIA, ["Otydlig"])

  assert edits.changes() == {"text": "Vilken svensk sjö är störst till ytan?", "correct_index": 1}
  assert "Otydlig" in provider.prompts[0][0]


@pytest.mark.anyio
async def test_propose_edits_discards_invalid_or_empty_edits() -> None:
  item = make_item("Vilken är Sveriges största sjö?")

  assert await CannedProvider({"proposedEdits": {"options_sv": ["a", "b"]}}).propose_edits(item, None, []) is None
  assert await CannedProvider({"proposedEdits": {}}).propose_edits(item, None, []) is None
  assert await CannedProvider({"nothing": True}).propose_edits(item, None, []) is None


@pytest.mark.anyio
async def test_check_ambiguity() -> None:
  provider = CannedProvider({"ambiguous": True, "alternativeCorrectOptions": ["Vättern"], "reason": "Båda kan vara rätt."})

  result = await provider.check_ambiguity(make_item("Vilken är Sveriges största sjö?"), None)

  assert result.ambiguous
  assert result.alternative_correct_options == ["Vättern"]
  assert result.reason == "Båda kan vara rätt."


@pytest.mark.anyio
async def test_check_availability_reports_ping_failures() -> None:
  assert (await CannedProvider().check_availability()).available

  status = await CannedProvider(ping_error=ConnectionError("refused")).check_availability()

  assert not status.available
  assert status.message == "ConnectionError: refused"


def test_registry_builds_configured_providers_with_purposes() -> None:
  settings = make_settings(
    providers=(
      ProviderSettings(name="openai", api_key="sk-test", model="gpt-test", base_url=None, max_items_per_request=4, purposes=("generation",)),
      ProviderSettings(name="mistral", api_key="m-test", model="mistral-test", base_url="https://api.mistral.ai/v1", max_items_per_request=2, purposes=("validation",)),
    )
  )

  registry = build_provider_registry(settings)

  assert registry.names == ["openai", "mistral"]
  assert [provider.name for provider in registry.for_purpose("generation")] == ["openai"]
  assert [provider.name for provider in registry.for_purpose("validation")] == ["mistral"]
  assert registry.get("OpenAI").max_items_per_request == 4


def test_registry_skips_provider_without_key() -> None:
  settings = make_settings(providers=(ProviderSettings(name="openai", api_key="", model="gpt-test", base_url=None, max_items_per_request=4, purposes=("generation", "validation")),))

  assert len(build_provider_registry(settings)) == 0
