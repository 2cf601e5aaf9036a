"""Test configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from automation_engine.config import EngineSettings
from automation_engine.workflow.collaborators import AgentTask, AuditResult
from automation_engine.workflow.events import EventBus
from automation_engine.workflow.ticker import TickCallback


class FakeTools:
    """Tool executor whose tools are plain (sync or async) callables."""

    def __init__(self, **handlers: Callable[..., Any]) -> None:
        self.handlers = handlers
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def execute_tool(self, name: str, params: dict[str, Any]) -> Any:
        self.calls.append((name, params))
        handler = self.handlers.get(name)
        if handler is None:
            raise RuntimeError(f"Unknown tool: {name}")
        result = handler(**params)
        if asyncio.iscoroutine(result):
            return await result
        return result


class FakeAgents:
    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []

    def create_task(
        self, title: str, description: str, required_skills: list[str], priority: str
    ) -> AgentTask:
        task = AgentTask(id=f"task-{len(self.created) + 1}")
        self.created.append(
            {
                "task": task,
                "title": title,
                "description": description,
                "required_skills": required_skills,
                "priority": priority,
            }
        )
        return task


class FakeAuditor:
    def __init__(self, safe: bool = True, issues: list[str] | None = None) -> None:
        self.result = AuditResult(safe=safe, issues=issues or [])
        self.calls: list[tuple[str, str]] = []

    def security_audit(self, serialized_steps: str, context: str) -> AuditResult:
        self.calls.append((serialized_steps, context))
        return self.result


class ManualTicker:
    """Ticker that only fires when the test says so."""

    def __init__(self) -> None:
        self.callbacks: dict[str, TickCallback] = {}
        self.periods: dict[str, int] = {}

    def start(self, period_ms: int, callback: TickCallback, *, name: str) -> ManualTicker:
        self.callbacks[name] = callback
        self.periods[name] = period_ms
        return self

    def stop(self) -> None:
        self.callbacks.clear()

    async def fire(self, name: str) -> Any:
        return await self.callbacks[name]()


class FakeClock:
    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 6, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def storage_dir(tmp_path: Path) -> Path:
    """Provide a temporary storage directory."""
    path = tmp_path / "workflows"
    path.mkdir()
    return path


@pytest.fixture
def settings(storage_dir: Path) -> EngineSettings:
    return EngineSettings(storage_path=storage_dir, log_level="DEBUG")


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def agents() -> FakeAgents:
    return FakeAgents()


@pytest.fixture
def auditor() -> FakeAuditor:
    return FakeAuditor()


@pytest.fixture
def ticker() -> ManualTicker:
    return ManualTicker()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
