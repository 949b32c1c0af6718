"""Gemini provider using the google-genai SDK."""

from __future__ import annotations

import logging
from typing import Any

from google import genai

from geoquest.ai.backoff import retry_with_backoff
from geoquest.ai.json_parser import parse_json_with_fallback
from geoquest.ai.providers.base import LLMQuestionProvider

logger = logging.getLogger(__name__)


class GeminiQuestionProvider(LLMQuestionProvider):
  def __init__(self, *, api_key: str, model_name: str, max_items_per_request: int, name: str = "gemini") -> None:
    super().__init__(name=name, model_name=model_name, max_items_per_request=max_items_per_request)
    if not api_key:
      raise ValueError("GEMINI_API_KEY is required for the Gemini provider")
    self._client = genai.Client(api_key=api_key)

  async def complete_json(self, prompt: str, schema: dict[str, Any]) -> Any:
    # The async client keeps the event loop free while Gemini works.
    config = {"response_mime_type": "application/json", "response_schema": schema, "temperature": 0.7}
    response = await retry_with_backoff(self._client.aio.models.generate_content, model=self.model_name, contents=prompt, config=config)
    text = response.text or ""
    logger.debug("Gemini response (%s):\n%s", self.model_name, text)
    return parse_json_with_fallback(text)

  async def ping(self) -> None:
    await self._client.aio.models.get(model=self.model_name)
