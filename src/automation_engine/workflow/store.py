"""Workflow definitions and run records.

Definitions are held in memory and persisted by rewriting the whole JSON
collection on every mutation. Runs live in memory for the lifetime of the
process only.

Mutations are not locked: callers are expected to funnel them through the
engine facade from a single event loop.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Callable, Iterable
from datetime import datetime
from pathlib import Path
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from .models import RunStatus, Workflow, WorkflowRun, utc_now

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

# Fields that identify a workflow or are maintained by the engine itself.
_PROTECTED_FIELDS = frozenset({"id", "created_at"})


class JsonListFile(Generic[RecordT]):
    """JSON-file backed list of pydantic records."""

    def __init__(self, path: Path, model: type[RecordT]) -> None:
        self._path = path
        self._model = model

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> list[RecordT]:
        if not self._path.exists():
            return []

        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            logger.warning(
                "State file is not valid JSON; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        if raw is None:
            return []

        if not isinstance(raw, list):
            logger.warning(
                "State file has unexpected shape; treating as empty",
                extra={"path": str(self._path)},
            )
            return []

        return [self._model.model_validate(item) for item in raw]

    def save(self, records: Iterable[RecordT]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        payload = [record.model_dump(mode="json") for record in records]
        self._path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False) + "\n", encoding="utf-8"
        )


ScheduleHook = Callable[[Workflow], None]
UnscheduleHook = Callable[[str], None]


class WorkflowStore:
    """Owns workflow definitions, their persistence and the run registry."""

    def __init__(
        self,
        file: JsonListFile[Workflow],
        *,
        on_scheduled: ScheduleHook | None = None,
        on_unscheduled: UnscheduleHook | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._file = file
        self._workflows: dict[str, Workflow] = {}
        self._runs: dict[str, WorkflowRun] = {}
        self._clock = clock
        self.on_scheduled = on_scheduled
        self.on_unscheduled = on_unscheduled

    def load(self) -> list[Workflow]:
        self._workflows = {wf.id: wf for wf in self._file.load()}
        logger.info("Workflows loaded", extra={"count": len(self._workflows)})
        for workflow in self._workflows.values():
            self._reschedule(workflow)
        return self.list()

    def save(self) -> None:
        self._file.save(self._workflows.values())

    def list(self) -> list[Workflow]:
        return list(self._workflows.values())

    def get(self, workflow_id: str) -> Workflow | None:
        return self._workflows.get(workflow_id)

    def create(self, **fields: Any) -> Workflow:
        fields = {k: v for k, v in fields.items() if v is not None}
        fields.setdefault("created_at", self._clock())
        workflow = Workflow.model_validate(fields)
        if workflow.id in self._workflows:
            raise ValueError(f"Workflow {workflow.id} already exists")

        self._workflows[workflow.id] = workflow
        self.save()
        logger.info("Workflow created", extra={"workflow_id": workflow.id, "name": workflow.name})

        self._reschedule(workflow)
        return workflow

    def update(self, workflow_id: str, **updates: Any) -> Workflow | None:
        """Apply `updates` in place. Returns None when the workflow is unknown."""

        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            return None

        ignored = _PROTECTED_FIELDS.intersection(updates)
        if ignored:
            logger.warning(
                "Ignoring protected workflow fields",
                extra={"workflow_id": workflow_id, "fields": sorted(ignored)},
            )

        merged = workflow.model_dump()
        merged.update({k: v for k, v in updates.items() if k not in _PROTECTED_FIELDS})
        validated = Workflow.model_validate(merged)

        # Mutate in place so runs already holding this object see the new definition.
        for name in Workflow.model_fields:
            setattr(workflow, name, getattr(validated, name))

        self.save()
        logger.info("Workflow updated", extra={"workflow_id": workflow_id})

        if self.on_unscheduled is not None:
            self.on_unscheduled(workflow_id)
        self._reschedule(workflow)
        return workflow

    def delete(self, workflow_id: str) -> bool:
        if self.on_unscheduled is not None:
            self.on_unscheduled(workflow_id)

        if self._workflows.pop(workflow_id, None) is None:
            return False

        self.save()
        logger.info("Workflow deleted", extra={"workflow_id": workflow_id})
        return True

    def _reschedule(self, workflow: Workflow) -> None:
        if workflow.is_scheduled and workflow.enabled and self.on_scheduled is not None:
            self.on_scheduled(workflow)

    # Runs

    def add_run(self, run: WorkflowRun) -> None:
        self._runs[run.id] = run

    def get_run(self, run_id: str) -> WorkflowRun | None:
        return self._runs.get(run_id)

    def list_runs(self, workflow_id: str | None = None) -> list[WorkflowRun]:
        runs = list(self._runs.values())
        if workflow_id is None:
            return runs
        return [run for run in runs if run.workflow_id == workflow_id]

    def active_runs(self) -> list[WorkflowRun]:
        return [run for run in self._runs.values() if run.status is RunStatus.RUNNING]
