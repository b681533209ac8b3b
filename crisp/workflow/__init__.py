from .base import (
    LoopWorkflow,
    SequentialWorkflow,
    WorkflowContext,
    WorkflowResult,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = [
    "LoopWorkflow",
    "SequentialWorkflow",
    "WorkflowContext",
    "WorkflowResult",
    "WorkflowStatus",
    "WorkflowStep",
]
