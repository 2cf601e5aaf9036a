"""Step interpreter: executes one run of one workflow.

The run walks the step graph from the first declared step, following
`next_on_success` after each successful step and `next_on_failure` after a
failed one. A failure with no failure edge fails the whole run. Steps run
strictly one after another, except the branches of a `parallel` step.

Every step, including the nested steps of `loop` and `parallel`, is raced
against its own timeout. Cancellation is cooperative: the run status is only
checked between steps.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any

from automation_engine.errors import (
    AgentTaskError,
    StepError,
    StepTimeoutError,
    UnknownStepTypeError,
)

from .collaborators import AgentDelegator, TaskCompletion, ToolExecutor, resolve
from .events import TASK_COMPLETED, WORKFLOW_INPUT_REQUIRED, EventBus
from .expressions import evaluate_condition, interpolate, interpolate_params
from .models import RunStatus, StepType, Workflow, WorkflowRun, WorkflowStep

logger = logging.getLogger(__name__)

DEFAULT_STEP_TIMEOUT_MS = 60000
DEFAULT_AGENT_TIMEOUT_MS = 300000
DEFAULT_WAIT_MS = 1000


class StepInterpreter:
    def __init__(
        self,
        *,
        tools: ToolExecutor,
        agents: AgentDelegator,
        events: EventBus,
        default_timeout_ms: int = DEFAULT_STEP_TIMEOUT_MS,
        agent_timeout_ms: int = DEFAULT_AGENT_TIMEOUT_MS,
        max_transitions: int = 1000,
    ) -> None:
        self._tools = tools
        self._agents = agents
        self._events = events
        self._default_timeout_ms = default_timeout_ms
        self._agent_timeout_ms = agent_timeout_ms
        self._max_transitions = max_transitions

    async def execute_run(
        self, workflow: Workflow, run: WorkflowRun, variables: dict[str, Any]
    ) -> WorkflowRun:
        """Walk the graph, recording results on `run`.

        On return the run is terminal unless it was cancelled mid-flight, in
        which case the cancelled status is kept.
        """

        first = workflow.first_step
        current_id = first.id if first is not None else None
        transitions = 0

        try:
            while current_id and run.status is RunStatus.RUNNING:
                step = workflow.get_step(current_id)
                if step is None:
                    logger.warning(
                        "Step not found; ending run",
                        extra={"run_id": run.id, "step_id": current_id},
                    )
                    break

                transitions += 1
                if transitions > self._max_transitions:
                    raise StepError(
                        f"Run exceeded {self._max_transitions} step transitions"
                    )

                run.current_step = step.id
                try:
                    result = await self.execute_step(step, variables)
                except Exception as e:
                    run.record_result(step.id, {"error": str(e)})
                    if step.next_on_failure:
                        logger.info(
                            "Step failed; following failure edge",
                            extra={
                                "run_id": run.id,
                                "step_id": step.id,
                                "next_step": step.next_on_failure,
                                "error": str(e),
                            },
                        )
                        current_id = step.next_on_failure
                        continue
                    raise

                run.record_result(step.id, result)
                variables[f"step_{step.id}"] = result
                current_id = step.next_on_success

            if run.status is RunStatus.RUNNING:
                run.status = RunStatus.COMPLETED

        except Exception as e:
            logger.warning(
                "Run failed",
                extra={"run_id": run.id, "workflow_id": workflow.id, "error": str(e)},
            )
            run.status = RunStatus.FAILED
            run.error = str(e)

        return run

    async def execute_step(self, step: WorkflowStep, variables: dict[str, Any]) -> Any:
        """Run a single step, raising `StepTimeoutError` when it overruns."""

        timeout_ms = step.timeout or self._default_timeout_ms
        deadline = asyncio.timeout(timeout_ms / 1000)
        try:
            async with deadline:
                return await self.run_step(step, variables)
        except TimeoutError as e:
            # A TimeoutError raised by the step itself is an ordinary step failure.
            if not deadline.expired():
                raise
            raise StepTimeoutError() from e

    async def run_step(self, step: WorkflowStep, variables: dict[str, Any]) -> Any:
        logger.debug("Executing step", extra={"step_id": step.id, "step_type": step.type.value})
        config = step.config

        match step.type:
            case StepType.TOOL:
                return await self._run_tool(step, variables)
            case StepType.AGENT:
                return await self._run_agent(step, variables)
            case StepType.CONDITION:
                condition = interpolate(config.get("condition", ""), variables)
                return evaluate_condition(condition, variables)
            case StepType.LOOP:
                return await self._run_loop(step, variables)
            case StepType.PARALLEL:
                return await self._run_parallel(step, variables)
            case StepType.WAIT:
                duration = config.get("duration") or DEFAULT_WAIT_MS
                await asyncio.sleep(duration / 1000)
                return {"waited": duration}
            case StepType.INPUT:
                self._events.emit(
                    WORKFLOW_INPUT_REQUIRED, {"stepId": step.id, "prompt": config.get("prompt")}
                )
                return variables.get(f"input_{step.id}")
            case StepType.OUTPUT:
                return interpolate(config.get("template"), variables)

        raise UnknownStepTypeError(step.type)

    async def _run_tool(self, step: WorkflowStep, variables: dict[str, Any]) -> Any:
        tool = step.config.get("tool")
        if not tool:
            raise StepError(f"Step {step.id} has no tool configured")
        params = interpolate_params(step.config.get("params") or {}, variables)
        logger.info("Executing tool", extra={"step_id": step.id, "tool": tool})
        return await resolve(self._tools.execute_tool(tool, params))

    async def _run_agent(self, step: WorkflowStep, variables: dict[str, Any]) -> Any:
        loop = asyncio.get_running_loop()
        outcome: asyncio.Future[TaskCompletion] = loop.create_future()
        early: list[TaskCompletion] = []
        task_id: str | None = None

        def on_completed(payload: TaskCompletion) -> None:
            if outcome.done():
                return
            if task_id is None:
                early.append(payload)
            elif payload.task.id == task_id:
                outcome.set_result(payload)

        # Subscribe first so a completion emitted while the task is being
        # created is not missed.
        self._events.on(TASK_COMPLETED, on_completed)
        try:
            task = await resolve(
                self._agents.create_task(
                    step.name,
                    interpolate(step.config.get("prompt", ""), variables),
                    list(step.config.get("skills") or []),
                    step.config.get("priority") or "medium",
                )
            )
            task_id = task.id
            for payload in early:
                if payload.task.id == task_id:
                    outcome.set_result(payload)
                    break

            timeout_ms = step.config.get("timeout") or self._agent_timeout_ms
            try:
                completion = await asyncio.wait_for(outcome, timeout_ms / 1000)
            except TimeoutError as e:
                raise AgentTaskError(f"Agent task {task_id} timed out") from e
        finally:
            self._events.off(TASK_COMPLETED, on_completed)

        if not completion.success:
            raise AgentTaskError(f"Agent task failed: {completion.task.result}")
        return completion.task.result

    async def _run_loop(self, step: WorkflowStep, variables: dict[str, Any]) -> list[Any]:
        items_name = step.config.get("items")
        items = variables.get(items_name) if items_name else None
        if items is None:
            items = []
        if isinstance(items, str | bytes) or not isinstance(items, Sequence):
            raise StepError(f"Loop items '{items_name}' is not a sequence")

        body = self._nested(step.config.get("body"), step)
        results = []
        for item in items:
            scope = {**variables, "item": item}
            results.append(await self.execute_step(body, scope))
        return results

    async def _run_parallel(self, step: WorkflowStep, variables: dict[str, Any]) -> list[Any]:
        branches = [self._nested(raw, step) for raw in step.config.get("steps") or []]
        tasks = [asyncio.ensure_future(self.execute_step(b, variables)) for b in branches]
        try:
            return list(await asyncio.gather(*tasks))
        except BaseException:
            # First failure aborts the aggregate; do not leave siblings running.
            for task in tasks:
                task.cancel()
            raise

    @staticmethod
    def _nested(raw: Any, parent: WorkflowStep) -> WorkflowStep:
        if isinstance(raw, WorkflowStep):
            return raw
        if not isinstance(raw, dict):
            raise StepError(f"Step {parent.id} has an invalid nested step")
        data = {"name": parent.name, **raw}
        data.setdefault("id", f"{parent.id}.{data.get('type', 'step')}")
        return WorkflowStep.model_validate(data)
