"""Periodic callbacks on the running event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any, Protocol

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[Any]]


class TickerHandle(Protocol):
    def stop(self) -> None: ...


class Ticker(Protocol):
    def start(self, period_ms: int, callback: TickCallback, *, name: str) -> TickerHandle: ...


class _TaskHandle:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def stop(self) -> None:
        self._task.cancel()


class AsyncioTicker:
    """Run a coroutine callback every `period_ms` until stopped.

    The first call happens one period after `start`. A failing callback is
    logged and the ticker keeps going.
    """

    def start(self, period_ms: int, callback: TickCallback, *, name: str) -> TickerHandle:
        task = asyncio.get_running_loop().create_task(
            self._run(period_ms / 1000, callback, name), name=name
        )
        return _TaskHandle(task)

    async def _run(self, period: float, callback: TickCallback, name: str) -> None:
        while True:
            await asyncio.sleep(period)
            try:
                await callback()
            except Exception:
                logger.exception("Tick failed", extra={"ticker": name})
