"""
Base workflow abstractions for plan execution.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..events import AgentEvent, EventStream
    from ..interfaces import AuditLogger
    from ..plan import ExecutionPlan


class WorkflowStatus(StrEnum):
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkflowContext:
    """Context passed through workflow execution."""

    plan: ExecutionPlan
    workspace: str
    audit_logger: AuditLogger
    events: EventStream | None = None
    state: dict[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.state.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.state[key] = value

    def publish(self, event: AgentEvent) -> None:
        if self.events is not None:
            self.events.publish(event)


@dataclass
class WorkflowResult:
    """Result of a workflow step."""

    status: WorkflowStatus
    output: Any = None
    error: str | None = None
    failed_step: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == WorkflowStatus.COMPLETED

    @classmethod
    def success(cls, output: Any = None) -> WorkflowResult:
        return cls(status=WorkflowStatus.COMPLETED, output=output)

    @classmethod
    def failed(cls, error: str, failed_step: str | None = None) -> WorkflowResult:
        return cls(status=WorkflowStatus.FAILED, error=error, failed_step=failed_step)


class WorkflowStep(ABC):
    """Base class for a workflow step."""

    name: str
    description: str = ""

    @abstractmethod
    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        pass

    async def on_start(self, ctx: WorkflowContext) -> None:
        del ctx

    async def on_complete(self, ctx: WorkflowContext, result: WorkflowResult) -> None:
        del ctx
        del result

    async def on_error(self, ctx: WorkflowContext, error: Exception) -> None:
        del ctx
        del error


class SequentialWorkflow(WorkflowStep):
    """Executes steps in sequence, stopping at the first failure."""

    def __init__(self, name: str, steps: list[WorkflowStep]):
        self.name = name
        self.steps = steps

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        for step in self.steps:
            await step.on_start(ctx)
            try:
                result = await step.execute(ctx)
            except Exception as exc:
                await step.on_error(ctx, exc)
                return WorkflowResult.failed(str(exc) or type(exc).__name__, step.name)
            await step.on_complete(ctx, result)
            if not result.ok:
                if result.failed_step is None:
                    result.failed_step = step.name
                return result
        return WorkflowResult.success()


class LoopWorkflow(WorkflowStep):
    """Executes steps in a loop until condition is met or the iteration budget runs out.

    When ``delay`` is set, each iteration waits that long first through ``sleep``.
    """

    def __init__(
        self,
        name: str,
        steps: list[WorkflowStep],
        max_iterations: int = 3,
        break_condition: Callable[[WorkflowContext, WorkflowResult], bool] | None = None,
        delay: float = 0.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.name = name
        self.steps = steps
        self.max_iterations = max_iterations
        self.break_condition = break_condition or (lambda ctx, result: False)
        self.delay = delay
        self.sleep = sleep

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        for iteration in range(1, self.max_iterations + 1):
            ctx.state["current_iteration"] = iteration
            if self.delay:
                await self.sleep(self.delay)
            for step in self.steps:
                await step.on_start(ctx)
                try:
                    result = await step.execute(ctx)
                except Exception as exc:
                    await step.on_error(ctx, exc)
                    return WorkflowResult.failed(str(exc), step.name)
                await step.on_complete(ctx, result)
                if not result.ok:
                    return result
                if self.break_condition(ctx, result):
                    return WorkflowResult.success(
                        output={"iterations": iteration, "result": result.output}
                    )

        return WorkflowResult.success(
            output={"iterations": self.max_iterations, "max_reached": True}
        )
