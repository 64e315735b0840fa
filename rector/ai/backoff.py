"""Retry logic for provider rate limiting."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

T = TypeVar("T")
logger = logging.getLogger(__name__)

# Delays in seconds between attempts on quota errors.
RATE_LIMIT_DELAYS: tuple[float, ...] = (5, 20, 50)


def is_rate_limit_error(exc: BaseException) -> bool:
  """Return True for 429/quota style provider errors."""
  error_msg = str(exc)
  is_quota_error = "Resource Exhausted" in error_msg or "Quota Exceeded" in error_msg
  is_rate_limit = "429" in error_msg or "Too Many Requests" in error_msg
  return is_quota_error or is_rate_limit


async def retry_with_backoff(func: Callable[..., Awaitable[T]], *args, delays: tuple[float, ...] = RATE_LIMIT_DELAYS, **kwargs) -> T:
  """
  Execute a coroutine function, retrying only rate-limit errors.

  Any other error is raised immediately.
  """
  for attempt, delay in enumerate(delays):
    try:
      return await func(*args, **kwargs)
    except Exception as e:
      if not is_rate_limit_error(e):
        raise
      logger.warning("Retry attempt %s/%s needed. Error: %s. Retrying in %ss...", attempt + 1, len(delays), e, delay)
      await asyncio.sleep(delay)

  # Final attempt
  return await func(*args, **kwargs)
