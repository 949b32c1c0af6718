"""Read-only source of content rule configuration."""

from __future__ import annotations

from typing import Protocol

from geoquest.pipeline.rules import RuleConfig


class RuleConfigSource(Protocol):
  async def load_rule_config(self) -> RuleConfig:
    """Return the current rule configuration snapshot."""


class StaticRuleConfigSource:
  """Serves a fixed configuration; used when no database is configured."""

  def __init__(self, config: RuleConfig | None = None) -> None:
    self._config = config or RuleConfig()

  async def load_rule_config(self) -> RuleConfig:
    return self._config
