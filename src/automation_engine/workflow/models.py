"""Persisted and in-memory records of the workflow engine."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


def _short_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:8]}"


def utc_now() -> datetime:
    return datetime.now(UTC)


class StepType(str, Enum):
    TOOL = "tool"
    AGENT = "agent"
    CONDITION = "condition"
    LOOP = "loop"
    PARALLEL = "parallel"
    WAIT = "wait"
    INPUT = "input"
    OUTPUT = "output"


class TriggerType(str, Enum):
    MANUAL = "manual"
    SCHEDULE = "schedule"
    EVENT = "event"
    CONDITION = "condition"
    INTENT = "intent"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class WorkflowStep(BaseModel):
    """One typed unit of work, linked to successors by success/failure edges.

    Nested steps (a loop body, the branches of a parallel step) are stored
    inside the parent's `config` and may omit `id` and `name`.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str = Field(default_factory=lambda: _short_id("step"))
    name: str = Field(default="")
    type: StepType
    config: dict[str, Any] = Field(default_factory=dict)
    next_on_success: str | None = Field(default=None, alias="nextOnSuccess")
    next_on_failure: str | None = Field(default=None, alias="nextOnFailure")
    timeout: int | None = Field(
        default=None,
        gt=0,
        description="Per-step timeout in milliseconds; None uses the engine default",
    )


class WorkflowTrigger(BaseModel):
    type: TriggerType = Field(default=TriggerType.MANUAL)
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="For schedule triggers: either 'cron' (5-field) or 'interval' (ms)",
    )


class Workflow(BaseModel):
    """A named automation: a trigger plus a graph of steps."""

    id: str = Field(default_factory=lambda: _short_id("wf"))
    name: str = Field(default="New Workflow")
    description: str = Field(default="")
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    steps: list[WorkflowStep] = Field(default_factory=list)
    variables: dict[str, Any] = Field(default_factory=dict)
    enabled: bool = Field(default=True)

    created_at: datetime = Field(default_factory=utc_now)
    last_run_at: datetime | None = Field(default=None)
    run_count: int = Field(default=0, ge=0)
    success_count: int = Field(default=0, ge=0)

    @property
    def first_step(self) -> WorkflowStep | None:
        return self.steps[0] if self.steps else None

    @property
    def is_scheduled(self) -> bool:
        return self.trigger.type is TriggerType.SCHEDULE

    def get_step(self, step_id: str) -> WorkflowStep | None:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None


class WorkflowRun(BaseModel):
    """One execution of a workflow. Kept in memory only."""

    id: str = Field(default_factory=lambda: _short_id("run"))
    workflow_id: str
    status: RunStatus = Field(default=RunStatus.RUNNING)
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = Field(default=None)
    current_step: str | None = Field(default=None)
    input: dict[str, Any] = Field(default_factory=dict)
    results: dict[str, Any] = Field(default_factory=dict)
    error: str | None = Field(default=None)

    def record_result(self, step_id: str, value: Any) -> None:
        """Record a step outcome. The first outcome recorded for a step is kept."""

        self.results.setdefault(step_id, value)


class UserIntent(BaseModel):
    id: str = Field(default_factory=lambda: _short_id("intent"))
    pattern: str
    keywords: list[str] = Field(default_factory=list)
    workflow: str | None = Field(default=None, description="Bound workflow id")
    action: str = Field(default="")
    confidence: float = Field(default=0.6, ge=0.0, le=1.0)
    learned_from: list[str] = Field(default_factory=list)
    last_triggered: datetime | None = Field(default=None)
    trigger_count: int = Field(default=0, ge=0)
