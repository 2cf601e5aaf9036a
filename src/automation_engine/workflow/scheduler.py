"""Schedule-trigger reconciliation.

A single periodic tick checks every registered schedule-triggered workflow
against the clock. A workflow is due when its cron expression matches the
current minute, or when at least `interval` milliseconds have passed since
its last run (never-run workflows are always due).

Due workflows are dispatched as independent tasks so a slow or failing run
never holds up the tick or the other workflows.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from .cron import is_cron_match, is_valid_cron
from .models import Workflow, utc_now
from .store import WorkflowStore
from .ticker import Ticker, TickerHandle

logger = logging.getLogger(__name__)

Dispatch = Callable[[str], Awaitable[Any]]


def is_due(workflow: Workflow, now: datetime) -> bool:
    """Whether a schedule trigger should fire at `now`."""

    config = workflow.trigger.config
    cron = config.get("cron")
    interval = config.get("interval")

    if cron:
        return is_cron_match(str(cron), now)
    if interval:
        if workflow.last_run_at is None:
            return True
        elapsed_ms = (now - workflow.last_run_at).total_seconds() * 1000
        return elapsed_ms >= float(interval)
    return False


class Scheduler:
    def __init__(
        self,
        *,
        store: WorkflowStore,
        dispatch: Dispatch,
        ticker: Ticker,
        period_ms: int = 60000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._dispatch = dispatch
        self._ticker = ticker
        self._period_ms = period_ms
        self._clock = clock
        self._scheduled: dict[str, str] = {}
        self._handle: TickerHandle | None = None
        self._inflight: set[asyncio.Task[Any]] = set()

    @property
    def scheduled_ids(self) -> list[str]:
        return list(self._scheduled)

    def schedule(self, workflow: Workflow) -> None:
        cron = workflow.trigger.config.get("cron")
        if cron and not is_valid_cron(str(cron)):
            logger.warning(
                "Workflow has an invalid cron expression; it will never fire",
                extra={"workflow_id": workflow.id, "cron": cron},
            )
        self._scheduled[workflow.id] = workflow.name
        logger.info(
            "Workflow scheduled",
            extra={"workflow_id": workflow.id, "trigger": workflow.trigger.config},
        )

    def unschedule(self, workflow_id: str) -> None:
        if self._scheduled.pop(workflow_id, None) is not None:
            logger.info("Workflow unscheduled", extra={"workflow_id": workflow_id})

    def due_workflows(self, now: datetime) -> list[Workflow]:
        due: list[Workflow] = []
        for workflow_id in list(self._scheduled):
            workflow = self._store.get(workflow_id)
            if workflow is None or not workflow.enabled or not workflow.is_scheduled:
                continue
            try:
                if is_due(workflow, now):
                    due.append(workflow)
            except Exception:
                logger.exception(
                    "Failed to evaluate schedule", extra={"workflow_id": workflow_id}
                )
        return due

    async def check_schedule(self) -> list[str]:
        """Dispatch every due workflow. Returns the dispatched workflow ids."""

        dispatched: list[str] = []
        for workflow in self.due_workflows(self._clock()):
            logger.info(
                "Scheduled trigger",
                extra={"workflow_id": workflow.id, "name": workflow.name},
            )
            task = asyncio.get_running_loop().create_task(
                self._run(workflow.id, workflow.name), name=f"scheduled-{workflow.id}"
            )
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)
            dispatched.append(workflow.id)
        return dispatched

    async def _run(self, workflow_id: str, name: str) -> None:
        try:
            await self._dispatch(workflow_id)
        except Exception as e:
            logger.error(
                "Scheduled run failed",
                extra={"workflow_id": workflow_id, "name": name, "error": str(e)},
            )

    async def start(self) -> None:
        self.stop()
        self._handle = self._ticker.start(
            self._period_ms, self.check_schedule, name="workflow-scheduler"
        )
        await self.check_schedule()

    def stop(self) -> None:
        if self._handle is not None:
            self._handle.stop()
            self._handle = None

    async def drain(self) -> None:
        """Wait for dispatched runs to finish."""

        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
