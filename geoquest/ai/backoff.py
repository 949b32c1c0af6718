"""Retry provider calls that fail on rate limits or quota."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

DEFAULT_DELAYS: tuple[float, ...] = (5, 20, 50)
_RATE_LIMIT_HINTS = ("429", "too many requests", "rate limit", "resource exhausted", "quota exceeded")


def is_rate_limited(exc: BaseException) -> bool:
  status = getattr(exc, "status_code", None) or getattr(exc, "code", None)
  if status == 429:
    return True
  message = str(exc).lower()
  return any(hint in message for hint in _RATE_LIMIT_HINTS)


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, delays: Sequence[float] = DEFAULT_DELAYS, **kwargs) -> T:
  """Call `func`, sleeping through `delays` on rate-limit errors before a final attempt."""

  for attempt, delay in enumerate(delays, start=1):
    try:
      return await func(*args, **kwargs)
    except Exception as exc:
      if not is_rate_limited(exc):
        raise
      logger.warning("Rate limited (attempt %d/%d): %s. Retrying in %ss", attempt, len(delays), exc, delay)
      await asyncio.sleep(delay)
  return await func(*args, **kwargs)
