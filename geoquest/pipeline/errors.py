"""Error taxonomy for the question pipeline."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")


class PipelineError(Exception):
  """Base class for pipeline failures."""


class ProviderError(PipelineError):
  """A single provider call failed."""

  def __init__(self, provider: str, message: str, *, operation: str | None = None) -> None:
    super().__init__(f"{provider}: {message}")
    self.provider = provider
    self.operation = operation
    self.message = message


class ProviderTimeoutError(ProviderError):
  """A single provider call exceeded its deadline."""


class ExhaustedProvidersError(PipelineError):
  """No provider in the cycle could service the request."""

  def __init__(self, attempted: list[str]) -> None:
    names = ", ".join(attempted) or "none"
    super().__init__(f"All providers failed (attempted: {names})")
    self.attempted = attempted


class WatchdogAbort(PipelineError):
  """The task was aborted cooperatively and must stop at the next boundary."""

  def __init__(self, reason: str) -> None:
    super().__init__(reason)
    self.reason = reason


class PersistenceError(PipelineError):
  """Saving or updating one question failed."""


async def call_provider(provider: str, operation: str, call: Callable[[], Awaitable[T]], *, timeout_seconds: float) -> T:
  """Run one provider call under a deadline and normalize its failures."""

  try:
    return await asyncio.wait_for(call(), timeout=timeout_seconds)
  except ProviderError:
    raise
  except TimeoutError as exc:
    raise ProviderTimeoutError(provider, f"{operation} timed out after {timeout_seconds:g}s", operation=operation) from exc
  except Exception as exc:  # noqa: BLE001
    raise ProviderError(provider, f"{operation} failed: {type(exc).__name__}: {exc}", operation=operation) from exc
