"""Providers reached through an OpenAI-compatible chat completions API."""

from __future__ import annotations

import logging
import os
from typing import Any

from openai import AsyncOpenAI

from geoquest.ai.backoff import retry_with_backoff
from geoquest.ai.json_parser import parse_json_with_fallback
from geoquest.ai.providers.base import LLMQuestionProvider

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You write and review quiz questions. Output valid JSON only, with no markdown formatting."
RESPONSE_SCHEMA_NAME = "geoquest_response"


class OpenAICompatibleQuestionProvider(LLMQuestionProvider):
  """Serves OpenAI itself plus Anthropic, Mistral and OpenRouter via their compatible endpoints."""

  def __init__(self, *, name: str, api_key: str, model_name: str, max_items_per_request: int, base_url: str | None = None) -> None:
    super().__init__(name=name, model_name=model_name, max_items_per_request=max_items_per_request)
    if not api_key:
      raise ValueError(f"An API key is required for the {name} provider")

    default_headers: dict[str, str] = {}
    if name == "openrouter":
      # Optional attribution headers.
      referer = os.getenv("OPENROUTER_HTTP_REFERER")
      if referer:
        default_headers["HTTP-Referer"] = referer
      title = os.getenv("OPENROUTER_TITLE")
      if title:
        default_headers["X-Title"] = title

    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url, default_headers=default_headers or None)

  async def complete_json(self, prompt: str, schema: dict[str, Any]) -> Any:
    # Strict mode requires every property to be listed as required; these schemas keep optional fields.
    response = await retry_with_backoff(
      self._client.chat.completions.create,
      model=self.model_name,
      messages=[{"role": "system", "content": SYSTEM_PROMPT}, {"role": "user", "content": prompt}],
      response_format={"type": "json_schema", "json_schema": {"name": RESPONSE_SCHEMA_NAME, "schema": schema, "strict": False}},
      temperature=0.7,
    )
    content = response.choices[0].message.content or ""
    logger.debug("%s response (%s):\n%s", self.name, self.model_name, content)
    return parse_json_with_fallback(content)

  async def ping(self) -> None:
    await self._client.chat.completions.create(model=self.model_name, messages=[{"role": "user", "content": "ping"}], max_tokens=1)
