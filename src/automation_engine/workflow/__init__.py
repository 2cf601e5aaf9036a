"""Workflow domain: data model, evaluator, interpreter, scheduler and intents.

The pieces are composed by :class:`automation_engine.engine.AutomationEngine`;
each can also be constructed on its own with fakes for its collaborators.
"""

from automation_engine.workflow.models import (
    RunStatus,
    StepType,
    TriggerType,
    UserIntent,
    Workflow,
    WorkflowRun,
    WorkflowStep,
    WorkflowTrigger,
)

__all__ = [
    "RunStatus",
    "StepType",
    "TriggerType",
    "UserIntent",
    "Workflow",
    "WorkflowRun",
    "WorkflowStep",
    "WorkflowTrigger",
]
