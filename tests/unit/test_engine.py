"""Unit tests for the engine facade."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any

import pytest

from automation_engine.config import EngineSettings
from automation_engine.engine import AutomationEngine
from automation_engine.errors import SecurityAuditError, WorkflowNotFoundError
from automation_engine.workflow.events import WORKFLOW_COMPLETED, EventBus
from automation_engine.workflow.models import RunStatus, UserIntent, WorkflowRun
from automation_engine.workflow.ticker import AsyncioTicker

from tests.conftest import FakeAgents, FakeAuditor, FakeClock, FakeTools, ManualTicker


def _engine(
    settings: EngineSettings,
    *,
    tools: FakeTools | None = None,
    auditor: FakeAuditor | None = None,
    events: EventBus | None = None,
    ticker: ManualTicker | None = None,
    clock: FakeClock | None = None,
) -> AutomationEngine:
    return AutomationEngine(
        settings,
        tools=tools or FakeTools(),
        agents=FakeAgents(),
        auditor=auditor or FakeAuditor(),
        events=events,
        ticker=ticker or ManualTicker(),
        clock=clock or FakeClock(),
    )


def _greeting_steps() -> list[dict[str, Any]]:
    return [
        {
            "id": "s1",
            "type": "tool",
            "config": {"tool": "echo", "params": {"text": "hello {{who}}"}},
            "next_on_success": "s2",
        },
        {"id": "s2", "type": "output", "config": {"template": "said {{step_s1}}"}},
    ]


def test_run_workflow_updates_counters_and_persists(
    settings: EngineSettings, clock: FakeClock
) -> None:
    events = EventBus()
    completed: list[WorkflowRun] = []
    events.on(WORKFLOW_COMPLETED, completed.append)
    engine = _engine(
        settings, tools=FakeTools(echo=lambda text: text), events=events, clock=clock
    )
    workflow = engine.create_workflow(
        name="Greeter", steps=_greeting_steps(), variables={"who": "nobody"}
    )

    run = asyncio.run(engine.run_workflow(workflow.id, {"who": "world"}))

    assert run.status is RunStatus.COMPLETED
    assert run.results == {"s1": "hello world", "s2": "said hello world"}
    assert run.input == {"who": "world"}
    assert run.completed_at == clock.now
    assert completed == [run]

    assert workflow.run_count == 1
    assert workflow.success_count == 1
    assert workflow.last_run_at == clock.now
    raw = json.loads(settings.workflows_file.read_text(encoding="utf-8"))
    assert raw[0]["run_count"] == 1
    assert raw[0]["success_count"] == 1

    assert engine.get_run(run.id) is run
    assert engine.list_runs(workflow.id) == [run]


def test_failed_run_counts_without_success(settings: EngineSettings) -> None:
    def broken(text: str) -> str:
        raise RuntimeError("tool crashed")

    engine = _engine(settings, tools=FakeTools(echo=broken))
    workflow = engine.create_workflow(steps=_greeting_steps())

    run = asyncio.run(engine.run_workflow(workflow.id))

    assert run.status is RunStatus.FAILED
    assert run.error == "tool crashed"
    assert workflow.run_count == 1
    assert workflow.success_count == 0


def test_rejected_audit_creates_no_run(settings: EngineSettings) -> None:
    auditor = FakeAuditor(safe=False, issues=["shell access", "network"])
    engine = _engine(settings, auditor=auditor)
    workflow = engine.create_workflow(name="Risky", steps=_greeting_steps())

    with pytest.raises(SecurityAuditError) as exc_info:
        asyncio.run(engine.run_workflow(workflow.id))

    assert str(exc_info.value) == "Security check failed: shell access, network"
    assert exc_info.value.workflow_id == workflow.id
    assert engine.list_runs() == []
    assert workflow.run_count == 0

    serialized, context = auditor.calls[0]
    assert context == "Workflow: Risky"
    assert [step["id"] for step in json.loads(serialized)] == ["s1", "s2"]


def test_unknown_workflow_is_not_found(settings: EngineSettings) -> None:
    engine = _engine(settings)

    with pytest.raises(WorkflowNotFoundError) as exc_info:
        asyncio.run(engine.run_workflow("wf_missing"))

    assert str(exc_info.value) == "Workflow wf_missing not found"
    assert isinstance(exc_info.value, KeyError)


def test_cancel_run_stops_before_next_step(settings: EngineSettings) -> None:
    engine = _engine(settings)
    workflow = engine.create_workflow(
        steps=[
            {"id": "a", "type": "wait", "config": {"duration": 50}, "next_on_success": "b"},
            {"id": "b", "type": "output", "config": {"template": "never"}},
        ]
    )

    async def scenario() -> tuple[WorkflowRun, bool]:
        pending = asyncio.ensure_future(engine.run_workflow(workflow.id))
        await asyncio.sleep(0.01)
        (run,) = engine.list_runs(workflow.id)
        cancelled = engine.cancel_run(run.id)
        return await pending, cancelled

    run, cancelled = asyncio.run(scenario())

    assert cancelled is True
    assert run.status is RunStatus.CANCELLED
    assert list(run.results) == ["a"]
    assert workflow.success_count == 0
    assert engine.cancel_run(run.id) is False
    assert engine.cancel_run("run_missing") is False


def test_run_of_deleted_workflow_is_not_written_back(settings: EngineSettings) -> None:
    engine = _engine(settings)
    workflow = engine.create_workflow(
        steps=[{"id": "a", "type": "wait", "config": {"duration": 30}}]
    )

    async def scenario() -> WorkflowRun:
        pending = asyncio.ensure_future(engine.run_workflow(workflow.id))
        await asyncio.sleep(0.01)
        assert engine.delete_workflow(workflow.id) is True
        return await pending

    run = asyncio.run(scenario())

    assert run.status is RunStatus.COMPLETED
    assert json.loads(settings.workflows_file.read_text(encoding="utf-8")) == []


def test_install_template_creates_disabled_copy(settings: EngineSettings) -> None:
    engine = _engine(settings)

    installed = engine.install_template("template_file_backup")

    assert installed.id != "template_file_backup"
    assert installed.enabled is False
    assert [step.type.value for step in installed.steps] == ["tool", "loop"]
    assert installed.variables == {"source_path": "~/Documents"}
    assert installed.id not in engine.scheduler.scheduled_ids

    enabled = engine.install_template("template_daily_summary", enabled=True, name="Mine")
    assert enabled.name == "Mine"
    assert enabled.id in engine.scheduler.scheduled_ids

    with pytest.raises(KeyError):
        engine.install_template("template_missing")

    assert {t.id for t in engine.get_templates()} == {
        "template_daily_summary",
        "template_file_backup",
        "template_social_post",
    }


def test_initialize_runs_due_schedules_and_registers_ticks(
    settings: EngineSettings, clock: FakeClock
) -> None:
    first = _engine(settings, clock=clock)
    scheduled = first.create_workflow(
        name="Heartbeat",
        trigger={"type": "schedule", "config": {"interval": 60000}},
        steps=[{"id": "s1", "type": "output", "config": {"template": "beat"}}],
    )
    first.create_workflow(name="Manual")

    ticker = ManualTicker()
    engine = _engine(settings, ticker=ticker, clock=clock)

    async def scenario() -> None:
        await engine.initialize()
        await engine.scheduler.drain()

        # Not due again until a full interval has passed.
        clock.advance(seconds=30)
        await ticker.fire("workflow-scheduler")
        await engine.scheduler.drain()

        clock.advance(seconds=30)
        await ticker.fire("workflow-scheduler")
        await engine.shutdown()

    asyncio.run(scenario())

    workflow = engine.get_workflow(scheduled.id)
    assert workflow is not None
    assert workflow.run_count == 2
    assert len(engine.list_runs(scheduled.id)) == 2
    assert ticker.callbacks == {}
    assert ticker.periods == {"workflow-scheduler": 60000, "intent-proactive": 60000}
    assert len(engine.list_workflows()) == 2


def test_proactive_tick_runs_bound_intent(settings: EngineSettings, clock: FakeClock) -> None:
    ticker = ManualTicker()
    engine = _engine(settings, ticker=ticker, clock=clock)

    async def scenario() -> tuple[str, UserIntent]:
        await engine.initialize()
        workflow = engine.create_workflow(
            steps=[{"id": "s1", "type": "output", "config": {"template": "inbox summary"}}]
        )
        intent = engine.learn_intent("summarize my inbox", "summary", workflow.id)
        intent.confidence = 0.9

        await ticker.fire("intent-proactive")
        await engine.shutdown()
        return workflow.id, intent

    workflow_id, intent = asyncio.run(scenario())

    (run,) = engine.list_runs(workflow_id)
    assert run.results == {"s1": "inbox summary"}
    assert intent.trigger_count == 2
    assert intent.last_triggered == clock.now


def test_intent_operations_validate_workflows(settings: EngineSettings) -> None:
    engine = _engine(settings)

    with pytest.raises(WorkflowNotFoundError):
        engine.learn_intent("remind me to call mom", "reminder", "wf_missing")

    intent = engine.learn_intent("remind me to call mom", "reminder")
    with pytest.raises(WorkflowNotFoundError):
        engine.bind_intent(intent.id, "wf_missing")

    workflow = engine.create_workflow(name="Reminder")
    assert engine.bind_intent(intent.id, workflow.id) is intent

    match = engine.match_intent("remind call")
    assert match is not None
    assert match.intent is intent
    assert engine.list_intents() == [intent]

    engine.delete_workflow(workflow.id)
    assert intent.workflow is None


def test_cancelled_run_still_finishes_its_bookkeeping(settings: EngineSettings) -> None:
    events = EventBus()
    completed: list[WorkflowRun] = []
    events.on(WORKFLOW_COMPLETED, completed.append)

    async def slow() -> str:
        await asyncio.sleep(1)
        return "late"

    engine = _engine(settings, tools=FakeTools(slow=slow), events=events)
    workflow = engine.create_workflow(steps=[{"id": "a", "type": "tool", "config": {"tool": "slow"}}])

    async def scenario() -> None:
        pending = asyncio.ensure_future(engine.run_workflow(workflow.id))
        await asyncio.sleep(0.05)
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

    asyncio.run(scenario())

    (run,) = engine.list_runs(workflow.id)
    assert run.status is RunStatus.CANCELLED
    assert run.error == "Run interrupted"
    assert run.completed_at is not None
    assert workflow.run_count == 1
    assert workflow.success_count == 0
    assert completed == [run]


def test_shutdown_waits_for_in_flight_proactive_run(storage_dir: Path, clock: FakeClock) -> None:
    settings = EngineSettings(storage_path=storage_dir, proactive_period_ms=20)
    events = EventBus()
    completed: list[WorkflowRun] = []
    events.on(WORKFLOW_COMPLETED, completed.append)

    async def slow() -> str:
        await asyncio.sleep(0.3)
        return "done"

    engine = AutomationEngine(
        settings,
        tools=FakeTools(slow=slow),
        agents=FakeAgents(),
        auditor=FakeAuditor(),
        events=events,
        ticker=AsyncioTicker(),
        clock=clock,
    )

    async def scenario() -> tuple[str, UserIntent]:
        await engine.initialize()
        workflow = engine.create_workflow(
            steps=[{"id": "a", "type": "tool", "config": {"tool": "slow"}}]
        )
        intent = engine.learn_intent("summarize my inbox", "summary", workflow.id)
        intent.confidence = 0.9

        await asyncio.sleep(0.1)
        await engine.shutdown()
        return workflow.id, intent

    workflow_id, intent = asyncio.run(scenario())

    (run,) = engine.list_runs(workflow_id)
    assert run.status is RunStatus.COMPLETED
    assert run.results == {"a": "done"}
    assert run.completed_at == clock.now
    assert completed == [run]
    assert engine.store.active_runs() == []
    workflow = engine.get_workflow(workflow_id)
    assert workflow is not None
    assert workflow.run_count == 1
    assert intent.last_triggered == clock.now
    assert intent.trigger_count == 2
