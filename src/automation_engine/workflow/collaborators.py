"""Interfaces of the services the engine delegates to.

The engine never implements tools, agents or the security audit itself; it
only invokes them through these protocols. Implementations may be sync or
async: results are awaited when they are awaitable.
"""

from __future__ import annotations

import inspect
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(slots=True)
class AgentTask:
    """A task delegated to an agent. `result` is filled in on completion."""

    id: str
    result: Any = None


@dataclass(frozen=True, slots=True)
class TaskCompletion:
    """Payload of the task-completed event."""

    task: AgentTask
    success: bool


@dataclass(frozen=True, slots=True)
class AuditResult:
    safe: bool
    issues: list[str] = field(default_factory=list)


class ToolExecutor(Protocol):
    def execute_tool(self, name: str, params: dict[str, Any]) -> Any: ...


class AgentDelegator(Protocol):
    def create_task(
        self,
        title: str,
        description: str,
        required_skills: list[str],
        priority: str,
    ) -> AgentTask: ...


class SecurityAuditor(Protocol):
    def security_audit(self, serialized_steps: str, context: str) -> AuditResult: ...


class MemoryRecall(Protocol):
    def recall(self, query: str, limit: int) -> Sequence[Any]: ...


class ProactiveAnalyzer(Protocol):
    """Inspects recalled memories for patterns worth acting on."""

    def analyze(self, memories: Sequence[Any]) -> None: ...


class AllowAllAuditor:
    """Auditor that accepts every workflow. Useful for local and test setups."""

    def security_audit(self, serialized_steps: str, context: str) -> AuditResult:
        _ = (serialized_steps, context)
        return AuditResult(safe=True)


async def resolve(value: Any) -> Any:
    """Await `value` if a collaborator returned an awaitable."""

    if inspect.isawaitable(value):
        return await value
    return value
