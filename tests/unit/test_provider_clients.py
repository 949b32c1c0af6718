from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from geoquest.ai import prompts
from geoquest.ai.providers.gemini import GeminiQuestionProvider
from geoquest.ai.providers.openai_compatible import RESPONSE_SCHEMA_NAME, OpenAICompatibleQuestionProvider
from tests.fakes import QUESTION_TEXTS, make_item


def _types(schema: Any) -> list[Any]:
  if isinstance(schema, dict):
    found = [schema["type"]] if "type" in schema else []
    for value in schema.values():
      found.extend(_types(value))
    return found
  if isinstance(schema, list):
    return [entry for value in schema for entry in _types(value)]
  return []


@pytest.mark.parametrize("schema", [prompts.GENERATION_SCHEMA, prompts.VALIDATION_SCHEMA, prompts.EDITS_SCHEMA, prompts.AMBIGUITY_SCHEMA])
def test_response_schemas_use_single_types(schema: dict[str, Any]) -> None:
  """Gemini response schemas accept one type name per node."""
  assert all(isinstance(kind, str) for kind in _types(schema))


@pytest.mark.anyio
async def test_openai_compatible_provider_sends_the_response_schema() -> None:
  provider = OpenAICompatibleQuestionProvider(name="mistral", api_key="test-key", model_name="mistral-small-latest", max_items_per_request=5, base_url="https://api.mistral.ai/v1")
  create = AsyncMock(return_value=SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"isValid": true, "issues": []}'))]))
  provider._client = MagicMock()
  provider._client.chat.completions.create = create

  verdict = await provider.validate(make_item(QUESTION_TEXTS[0]), None)

  assert verdict.is_valid
  response_format = create.await_args.kwargs["response_format"]
  assert response_format["type"] == "json_schema"
  assert response_format["json_schema"]["name"] == RESPONSE_SCHEMA_NAME
  assert response_format["json_schema"]["schema"] == prompts.VALIDATION_SCHEMA
  assert create.await_args.kwargs["model"] == "mistral-small-latest"


@pytest.mark.anyio
async def test_gemini_provider_sends_the_response_schema() -> None:
  provider = GeminiQuestionProvider(api_key="test-key", model_name="gemini-2.5-flash", max_items_per_request=5)
  generate_content = AsyncMock(return_value=SimpleNamespace(text='{"ambiguous": true, "alternativeCorrectOptions": ["Beta"], "reason": ""}'))
  provider._client = MagicMock()
  provider._client.aio.models.generate_content = generate_content

  result = await provider.check_ambiguity(make_item(QUESTION_TEXTS[0]), None)

  assert result.ambiguous
  assert result.alternative_correct_options == ["Beta"]
  assert result.reason is None
  config = generate_content.await_args.kwargs["config"]
  assert config["response_mime_type"] == "application/json"
  assert config["response_schema"] == prompts.AMBIGUITY_SCHEMA
