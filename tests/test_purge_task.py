"""
tests/test_purge_task.py -- The lifespan's expired-session purge loop.

Covers:
  - a failing purge pass is logged and the loop keeps running
  - cancellation (shutdown) still ends the task
"""

from __future__ import annotations

import asyncio
import logging
from types import SimpleNamespace

import pytest

from api.main import _purge_loop


class _FlakyProvider:
    """purge_expired() raises on the first call, then succeeds."""

    def __init__(self) -> None:
        self.calls = 0

    def purge_expired(self) -> int:
        self.calls += 1
        if self.calls == 1:
            raise RuntimeError("disk full")
        return 0


def test_purge_loop_survives_a_failed_pass(caplog) -> None:
    provider = _FlakyProvider()
    app = SimpleNamespace(state=SimpleNamespace(session_provider=provider))

    async def run() -> None:
        task = asyncio.create_task(_purge_loop(app, 0))
        while provider.calls < 2:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

    with caplog.at_level(logging.ERROR, logger="authgate.api"):
        asyncio.run(asyncio.wait_for(run(), timeout=5))

    assert provider.calls >= 2
    assert "Session purge failed" in caplog.text
