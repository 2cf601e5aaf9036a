"""Engine facade.

Composes the workflow store, step interpreter, scheduler and intent engine,
and owns the lifecycle of the two periodic ticks. All mutations are expected
to go through this object from a single event loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from automation_engine.config import EngineSettings
from automation_engine.errors import SecurityAuditError, WorkflowNotFoundError
from automation_engine.workflow.collaborators import (
    AgentDelegator,
    MemoryRecall,
    ProactiveAnalyzer,
    SecurityAuditor,
    ToolExecutor,
    resolve,
)
from automation_engine.workflow.events import WORKFLOW_COMPLETED, EventBus
from automation_engine.workflow.intents import IntentEngine, IntentMatch
from automation_engine.workflow.interpreter import StepInterpreter
from automation_engine.workflow.models import (
    RunStatus,
    UserIntent,
    Workflow,
    WorkflowRun,
    utc_now,
)
from automation_engine.workflow.scheduler import Scheduler
from automation_engine.workflow.store import JsonListFile, WorkflowStore
from automation_engine.workflow.templates import get_templates, template_definition
from automation_engine.workflow.ticker import AsyncioTicker, Ticker

logger = logging.getLogger(__name__)


class AutomationEngine:
    """Stores workflows, runs them, and fires them on schedule or intent.

    Collaborators are injected so tests can substitute fakes:
    `tools`, `agents` and `auditor` are required; `memory` and `analyzer`
    feed the proactive tick; `ticker` and `clock` control time.
    """

    def __init__(
        self,
        settings: EngineSettings | None = None,
        *,
        tools: ToolExecutor,
        agents: AgentDelegator,
        auditor: SecurityAuditor,
        events: EventBus | None = None,
        memory: MemoryRecall | None = None,
        analyzer: ProactiveAnalyzer | None = None,
        ticker: Ticker | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings or EngineSettings()
        self.events = events or EventBus()
        self._auditor = auditor
        self._clock = clock
        ticker = ticker or AsyncioTicker()

        self.store = WorkflowStore(
            JsonListFile(self.settings.workflows_file, Workflow), clock=clock
        )
        self.interpreter = StepInterpreter(
            tools=tools,
            agents=agents,
            events=self.events,
            default_timeout_ms=self.settings.default_step_timeout_ms,
            agent_timeout_ms=self.settings.agent_task_timeout_ms,
            max_transitions=self.settings.max_step_transitions,
        )
        self.scheduler = Scheduler(
            store=self.store,
            dispatch=self.run_workflow,
            ticker=ticker,
            period_ms=self.settings.scheduler_period_ms,
            clock=clock,
        )
        self.store.on_scheduled = self.scheduler.schedule
        self.store.on_unscheduled = self.scheduler.unschedule

        self.intents = IntentEngine(
            file=JsonListFile(self.settings.intents_file, UserIntent),
            dispatch=self.run_workflow,
            ticker=ticker,
            settings=self.settings,
            clock=clock,
            memory=memory,
            analyzer=analyzer,
        )

    async def initialize(self) -> None:
        """Load persisted state and start the scheduler and proactive ticks."""

        self.settings.storage_path.mkdir(parents=True, exist_ok=True)
        self.store.load()
        self.intents.load()
        await self.scheduler.start()
        self.intents.start()
        logger.info(
            "Automation engine initialized",
            extra={
                "workflows": len(self.store.list()),
                "intents": len(self.intents.list()),
            },
        )

    async def shutdown(self) -> None:
        """Stop both ticks and wait for the runs they started."""

        self.scheduler.stop()
        self.intents.stop()
        await self.scheduler.drain()
        await self.intents.drain()
        logger.info(
            "Automation engine stopped",
            extra={"active_runs": len(self.store.active_runs())},
        )

    # Workflow management

    def create_workflow(self, **fields: Any) -> Workflow:
        return self.store.create(**fields)

    def update_workflow(self, workflow_id: str, **updates: Any) -> Workflow | None:
        return self.store.update(workflow_id, **updates)

    def delete_workflow(self, workflow_id: str) -> bool:
        deleted = self.store.delete(workflow_id)
        if deleted:
            self.intents.forget_workflow(workflow_id)
        return deleted

    def get_workflow(self, workflow_id: str) -> Workflow | None:
        return self.store.get(workflow_id)

    def list_workflows(self) -> list[Workflow]:
        return self.store.list()

    def get_templates(self) -> list[Workflow]:
        return get_templates()

    def install_template(self, template_id: str, **overrides: Any) -> Workflow:
        """Create a new workflow from a built-in template."""

        fields = template_definition(template_id)
        if fields is None:
            raise KeyError(template_id)
        fields.update(overrides)
        return self.store.create(**fields)

    # Execution

    async def run_workflow(
        self, workflow_id: str, input: dict[str, Any] | None = None
    ) -> WorkflowRun:
        """Audit and execute a workflow, returning its finished run record.

        Raises:
            WorkflowNotFoundError: If the workflow does not exist.
            SecurityAuditError: If the audit rejects the workflow; no run is created.
        """

        workflow = self.store.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)

        serialized = json.dumps(
            [step.model_dump(mode="json") for step in workflow.steps], ensure_ascii=False
        )
        audit = await resolve(
            self._auditor.security_audit(serialized, f"Workflow: {workflow.name}")
        )
        if not audit.safe:
            logger.warning(
                "Workflow rejected by security audit",
                extra={"workflow_id": workflow_id, "issues": audit.issues},
            )
            raise SecurityAuditError(workflow_id=workflow_id, issues=list(audit.issues))

        run = WorkflowRun(workflow_id=workflow_id, input=dict(input or {}), started_at=self._clock())
        self.store.add_run(run)
        logger.info("Run started", extra={"run_id": run.id, "workflow_id": workflow_id})

        variables = {**workflow.variables, **(input or {})}
        try:
            await self.interpreter.execute_run(workflow, run, variables)
        except asyncio.CancelledError:
            run.status = RunStatus.CANCELLED
            run.error = "Run interrupted"
            raise
        finally:
            self._finish_run(workflow, run)
        return run

    def _finish_run(self, workflow: Workflow, run: WorkflowRun) -> None:
        run.completed_at = self._clock()
        workflow.run_count += 1
        if run.status is RunStatus.COMPLETED:
            workflow.success_count += 1
        workflow.last_run_at = run.completed_at

        # The workflow may have been deleted while the run was in flight.
        if self.store.get(workflow.id) is workflow:
            self.store.save()

        logger.info(
            "Run finished",
            extra={"run_id": run.id, "workflow_id": workflow.id, "status": run.status.value},
        )
        self.events.emit(WORKFLOW_COMPLETED, run)

    def cancel_run(self, run_id: str) -> bool:
        """Mark a running run cancelled; it stops before its next step."""

        run = self.store.get_run(run_id)
        if run is None or run.status.is_terminal:
            return False
        run.status = RunStatus.CANCELLED
        logger.info("Run cancelled", extra={"run_id": run_id})
        return True

    def get_run(self, run_id: str) -> WorkflowRun | None:
        return self.store.get_run(run_id)

    def list_runs(self, workflow_id: str | None = None) -> list[WorkflowRun]:
        return self.store.list_runs(workflow_id)

    # Intents

    def learn_intent(
        self, message: str, action: str, workflow_id: str | None = None
    ) -> UserIntent:
        if workflow_id is not None and self.store.get(workflow_id) is None:
            raise WorkflowNotFoundError(workflow_id)
        return self.intents.learn(message, action, workflow=workflow_id)

    def match_intent(self, message: str) -> IntentMatch | None:
        return self.intents.match(message)

    def bind_intent(self, intent_id: str, workflow_id: str | None) -> UserIntent | None:
        if workflow_id is not None and self.store.get(workflow_id) is None:
            raise WorkflowNotFoundError(workflow_id)
        return self.intents.bind(intent_id, workflow_id)

    def list_intents(self) -> list[UserIntent]:
        return self.intents.list()
