from __future__ import annotations

import pytest

from rector.ai.backoff import is_rate_limit_error, retry_with_backoff
from rector.ai.providers.base import AIModel


@pytest.mark.anyio
async def test_rate_limit_errors_are_retried() -> None:
  calls = 0

  async def _flaky() -> str:
    nonlocal calls
    calls += 1
    if calls < 3:
      raise RuntimeError("429 Too Many Requests")
    return "ok"

  assert await retry_with_backoff(_flaky, delays=(0, 0, 0)) == "ok"
  assert calls == 3


@pytest.mark.anyio
async def test_other_errors_are_raised_immediately() -> None:
  calls = 0

  async def _broken() -> str:
    nonlocal calls
    calls += 1
    raise ValueError("invalid api key")

  with pytest.raises(ValueError):
    await retry_with_backoff(_broken, delays=(0, 0))
  assert calls == 1


def test_rate_limit_detection() -> None:
  assert is_rate_limit_error(RuntimeError("Resource Exhausted: quota"))
  assert not is_rate_limit_error(RuntimeError("500 Internal"))


@pytest.mark.parametrize(
  ("raw", "expected"),
  [("```latex\n\\documentclass{article}\n```", "\\documentclass{article}"), ("```\nplain\n```", "plain"), ("  no fences  ", "no fences")],
)
def test_strip_code_fences(raw: str, expected: str) -> None:
  assert AIModel.strip_code_fences(raw) == expected
