"""
Plan execution steps.

Each PlanStep maps to one ExecutionStep of the plan by operation id. The
hooks announce the step on the session's event stream, mark it completed or
failed, and write the matching audit entry.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Awaitable, Callable

from .. import events
from ..errors import StepExecutionError
from ..interfaces import (
    FilesystemOperations,
    GitCredentials,
    GitOperations,
    PipelineGenerator,
    SourceControlProvider,
    TemplateEngine,
)
from ..plan import (
    OP_CREATE_REPOSITORY,
    OP_INIT_COMMIT,
    OP_PUSH,
    OP_SCAFFOLD,
    OP_TEMPLATE_SELECT,
    OP_TRIGGER_PIPELINE,
    OP_VERIFY_PIPELINE,
    ActionResult,
    ExecutionPhase,
    ExecutionStep,
)
from .base import LoopWorkflow, WorkflowContext, WorkflowResult, WorkflowStep

logger = logging.getLogger(__name__)

SUCCESS_CONCLUSIONS = frozenset({"success", "succeeded"})


class PlanStep(WorkflowStep):
    """A workflow step bound to one ExecutionStep of the plan."""

    operation: str

    def __init__(self) -> None:
        self.name = self.operation

    def plan_step(self, ctx: WorkflowContext) -> ExecutionStep:
        return ctx.plan.step(self.operation)

    def fail(self, ctx: WorkflowContext, message: str) -> StepExecutionError:
        return StepExecutionError(self.plan_step(ctx), message)

    async def on_start(self, ctx: WorkflowContext) -> None:
        step = self.plan_step(ctx)
        logger.info("Step %d: %s", step.step_number, step.description)
        ctx.publish(events.step_started(step.step_number, step.description))

    async def on_complete(self, ctx: WorkflowContext, result: WorkflowResult) -> None:
        step = self.plan_step(ctx)
        if result.ok:
            step.is_completed = True
            step.result = str(result.output) if result.output is not None else "Done"
            await ctx.audit_logger.log_action(
                self.operation,
                ExecutionPhase.EXECUTION,
                ActionResult.SUCCESS,
                step.result,
                {"step_number": step.step_number},
            )
        else:
            await self._record_failure(ctx, step, result.error or "Step failed")

    async def on_error(self, ctx: WorkflowContext, error: Exception) -> None:
        step = self.plan_step(ctx)
        logger.error("Step %d (%s) failed: %s", step.step_number, self.operation, error)
        await self._record_failure(ctx, step, str(error) or type(error).__name__)

    async def _record_failure(self, ctx: WorkflowContext, step: ExecutionStep, message: str) -> None:
        step.is_completed = False
        step.result = message
        await ctx.audit_logger.log_action(
            self.operation,
            ExecutionPhase.EXECUTION,
            ActionResult.FAILURE,
            message,
            {"step_number": step.step_number},
        )


class SelectTemplateStep(PlanStep):
    operation = OP_TEMPLATE_SELECT
    description = "Confirm the selected template"

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        template = ctx.plan.template
        return WorkflowResult.success(output=f"Using {template.name} v{template.version}")


class ScaffoldStep(PlanStep):
    """Scaffold the project and materialise the pipeline definition file."""

    operation = OP_SCAFFOLD
    description = "Scaffold project files into the workspace"

    def __init__(
        self,
        template_engine: TemplateEngine,
        filesystem: FilesystemOperations,
        pipeline_generator: PipelineGenerator | None = None,
    ):
        super().__init__()
        self.template_engine = template_engine
        self.filesystem = filesystem
        self.pipeline_generator = pipeline_generator

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        plan = ctx.plan
        scaffold = await self.template_engine.scaffold_project(
            plan.template, plan.requirements, ctx.workspace
        )
        if not scaffold.success:
            raise self.fail(ctx, f"Scaffolding failed: {scaffold.error_message or 'unknown error'}")
        for warning in scaffold.warnings:
            logger.warning("Scaffold warning for %s: %s", plan.requirements.project_name, warning)

        created = len(scaffold.created_files)
        if plan.pipeline is not None and self.pipeline_generator is not None:
            generated = await self.pipeline_generator.generate_pipeline(plan.requirements)
            if not generated.success:
                raise self.fail(
                    ctx,
                    f"Pipeline generation failed: {generated.error_message or 'unknown error'}",
                )
            file_path = os.path.join(ctx.workspace, plan.pipeline.file_path)
            await self.filesystem.create_directory(os.path.dirname(file_path))
            await self.filesystem.write_file(file_path, generated.content)
            ctx.set("pipeline_file", file_path)
            created += 1

        return WorkflowResult.success(output=f"Created {created} files")


class CreateRepositoryStep(PlanStep):
    operation = OP_CREATE_REPOSITORY
    description = "Create the remote repository"

    def __init__(self, scm: SourceControlProvider):
        super().__init__()
        self.scm = scm

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        plan = ctx.plan
        created = await self.scm.create_repository(
            plan.repository.name,
            plan.requirements.description,
            plan.requirements.visibility,
        )
        if not created.url or not created.clone_url:
            raise self.fail(ctx, "Repository was created without a URL")

        plan.repository.url = created.url
        plan.repository.clone_url = created.clone_url
        return WorkflowResult.success(output=created.url)


class InitCommitStep(PlanStep):
    operation = OP_INIT_COMMIT
    description = "Initialise git and commit the scaffold"

    def __init__(self, git: GitOperations, author_name: str, author_email: str):
        super().__init__()
        self.git = git
        self.author_name = author_name
        self.author_email = author_email

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        plan = ctx.plan
        await self.git.initialize_repository(ctx.workspace, plan.repository.default_branch)
        await self.git.stage_all(ctx.workspace)
        message = (
            f"Initial scaffold for {plan.requirements.project_name}\n\n"
            f"Template: {plan.template.name} v{plan.template.version}"
        )
        sha = await self.git.commit(ctx.workspace, message, self.author_name, self.author_email)
        ctx.set("commit_sha", sha)
        return WorkflowResult.success(output=f"Commit {sha[:7]}" if sha else "Committed")


class PushStep(PlanStep):
    operation = OP_PUSH
    description = "Push the initial commit"

    def __init__(self, git: GitOperations, credentials: GitCredentials):
        super().__init__()
        self.git = git
        self.credentials = credentials

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        repository = ctx.plan.repository
        if not repository.clone_url:
            raise self.fail(ctx, "No clone URL to push to")
        await self.git.add_remote(ctx.workspace, "origin", repository.clone_url)
        await self.git.push(ctx.workspace, "origin", repository.default_branch, self.credentials)
        return WorkflowResult.success(output=f"Pushed to {repository.default_branch}")


class TriggerPipelineStep(PlanStep):
    operation = OP_TRIGGER_PIPELINE
    description = "Start the first pipeline run"

    def __init__(self, scm: SourceControlProvider):
        super().__init__()
        self.scm = scm

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        repository = ctx.plan.repository
        run_url, run_id = await self.scm.trigger_pipeline(
            repository.name, None, repository.default_branch
        )
        ctx.set("pipeline_url", run_url)
        ctx.set("pipeline_run_id", run_id)
        return WorkflowResult.success(output=run_url or f"Run {run_id}")


class PollPipelineStatusStep(WorkflowStep):
    """One status poll. Errors are kept as telemetry."""

    name = "poll_pipeline_status"
    description = "Check the pipeline run status"

    def __init__(self, scm: SourceControlProvider):
        self.scm = scm

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        run_id = ctx.get("pipeline_run_id")
        attempt = ctx.get("current_iteration")
        try:
            status, conclusion = await self.scm.get_pipeline_status(ctx.plan.repository.name, run_id)
        except Exception as exc:
            logger.warning("Pipeline status poll %s failed: %s", attempt, exc)
            ctx.set("build_status", f"unknown ({exc})")
            return WorkflowResult.success(output={"status": None, "conclusion": None})

        logger.info("Pipeline poll %s: status=%s conclusion=%s", attempt, status, conclusion)
        ctx.set("build_status", conclusion or status)
        return WorkflowResult.success(output={"status": status, "conclusion": conclusion})


def _is_success(ctx: WorkflowContext, result: WorkflowResult) -> bool:
    del ctx
    conclusion = (result.output or {}).get("conclusion")
    return bool(conclusion) and conclusion.lower() in SUCCESS_CONCLUSIONS


class VerifyPipelineStep(PlanStep):
    """Bounded polling of the triggered run. Never fails the execution."""

    operation = OP_VERIFY_PIPELINE
    description = "Verify the pipeline run"

    def __init__(
        self,
        scm: SourceControlProvider,
        attempts: int = 3,
        interval: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        super().__init__()
        self.poll = LoopWorkflow(
            name="pipeline_poll",
            steps=[PollPipelineStatusStep(scm)],
            max_iterations=attempts,
            break_condition=_is_success,
            delay=interval,
            sleep=sleep,
        )

    async def execute(self, ctx: WorkflowContext) -> WorkflowResult:
        if not ctx.get("pipeline_run_id"):
            ctx.set("build_status", "not started")
            return WorkflowResult.success(output="Build status: not started")

        await self.poll.execute(ctx)
        build_status = ctx.get("build_status") or "pending"
        ctx.set("build_status", build_status)
        return WorkflowResult.success(output=f"Build status: {build_status}")
