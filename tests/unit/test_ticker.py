"""Unit tests for the asyncio ticker and the built-in collaborators."""

from __future__ import annotations

import asyncio

from automation_engine.workflow.collaborators import AllowAllAuditor, resolve
from automation_engine.workflow.ticker import AsyncioTicker


def test_ticker_keeps_running_after_a_failing_tick() -> None:
    calls: list[int] = []

    async def callback() -> None:
        calls.append(len(calls))
        if len(calls) == 1:
            raise RuntimeError("first tick fails")

    async def scenario() -> None:
        handle = AsyncioTicker().start(10, callback, name="test-ticker")
        await asyncio.sleep(0.1)
        handle.stop()
        stopped_at = len(calls)
        await asyncio.sleep(0.05)
        assert len(calls) == stopped_at

    asyncio.run(scenario())

    assert len(calls) >= 2


def test_ticker_waits_one_period_before_first_call() -> None:
    calls: list[str] = []

    async def callback() -> None:
        calls.append("tick")

    async def scenario() -> None:
        handle = AsyncioTicker().start(1000, callback, name="slow-ticker")
        await asyncio.sleep(0.02)
        handle.stop()

    asyncio.run(scenario())

    assert calls == []


def test_resolve_accepts_plain_and_awaitable_results() -> None:
    async def produce() -> str:
        return "async"

    async def scenario() -> tuple[object, object]:
        return await resolve("plain"), await resolve(produce())

    assert asyncio.run(scenario()) == ("plain", "async")


def test_allow_all_auditor_accepts_everything() -> None:
    result = AllowAllAuditor().security_audit("[]", "Workflow: Any")

    assert result.safe is True
    assert result.issues == []
