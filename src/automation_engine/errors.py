"""Exception types raised by the automation engine."""

from __future__ import annotations


class AutomationError(Exception):
    """Base class for engine errors."""


class WorkflowNotFoundError(AutomationError, KeyError):
    def __init__(self, workflow_id: str) -> None:
        super().__init__(workflow_id)
        self.workflow_id = workflow_id

    def __str__(self) -> str:
        return f"Workflow {self.workflow_id} not found"


class SecurityAuditError(AutomationError):
    """Raised when the security audit rejects a workflow before it starts."""

    def __init__(self, workflow_id: str, issues: list[str] | None = None) -> None:
        self.workflow_id = workflow_id
        self.issues = list(issues or [])
        super().__init__(f"Security check failed: {', '.join(self.issues)}")


class StepError(AutomationError):
    """A single step failed. Routed through `next_on_failure` when present."""


class StepTimeoutError(StepError):
    def __init__(self) -> None:
        super().__init__("Step timeout")


class AgentTaskError(StepError):
    pass


class UnknownStepTypeError(StepError):
    def __init__(self, step_type: object) -> None:
        super().__init__(f"Unknown step type: {step_type}")
        self.step_type = step_type
