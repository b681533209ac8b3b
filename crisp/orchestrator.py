"""
Plan creation and execution.

The orchestrator turns ProjectRequirements into an ExecutionPlan without side
effects, then runs an approved plan step by step inside an exclusively owned
workspace. Step failures become a failed DeliveryResult; cancellation
propagates to the caller. Remote side effects of steps that already
completed (a created repository, a pushed branch) are not rolled back.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, NoReturn

from . import events
from .config import Settings
from .errors import CleanupError, PlanningError, UsageError
from .events import EventStream
from .interfaces import (
    AuditLogger,
    FilesystemOperations,
    GitCredentials,
    GitOperations,
    PipelineGenerator,
    PlanApprover,
    PolicyEngine,
    PostDeliveryHook,
    SourceControlProvider,
    TemplateEngine,
)
from .links import vscode_clone_url, vscode_web_url
from .plan import (
    ActionResult,
    DeliveryResult,
    ExecutionPhase,
    ExecutionPlan,
    PipelineDefinition,
    PolicyValidationResult,
    ProjectRequirements,
    RepositoryDetails,
    ScmPlatform,
    build_execution_steps,
    build_plan_summary,
)
from .workflow import SequentialWorkflow, WorkflowContext, WorkflowStep
from .workflow.steps import (
    CreateRepositoryStep,
    InitCommitStep,
    PushStep,
    ScaffoldStep,
    SelectTemplateStep,
    TriggerPipelineStep,
    VerifyPipelineStep,
)

logger = logging.getLogger(__name__)


class Orchestrator:
    """Builds execution plans and runs approved ones."""

    def __init__(
        self,
        settings: Settings,
        template_engine: TemplateEngine,
        pipeline_generators: list[PipelineGenerator],
        scm_provider: SourceControlProvider,
        git: GitOperations,
        filesystem: FilesystemOperations,
        audit_logger: AuditLogger,
        policy_engine: PolicyEngine,
        post_delivery_hook: PostDeliveryHook | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.template_engine = template_engine
        self.pipeline_generators = list(pipeline_generators)
        self.scm = scm_provider
        self.git = git
        self.filesystem = filesystem
        self.audit = audit_logger
        self.policy_engine = policy_engine
        self.post_delivery_hook = post_delivery_hook
        self.sleep = sleep

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    async def create_plan(self, requirements: ProjectRequirements) -> ExecutionPlan:
        """Assemble a plan for the requirements. Touches no filesystem or remote."""
        logger.info(
            "Creating plan for %s (%s/%s)",
            requirements.project_name,
            requirements.language.value,
            requirements.framework.value,
        )
        await self.audit.log_action(
            "create_plan",
            ExecutionPhase.PLANNING,
            ActionResult.PENDING,
            f"Planning {requirements.project_name}",
            requirements.to_dict(),
        )

        try:
            templates = await self.template_engine.get_available_templates(requirements)
        except Exception as exc:
            logger.exception("Template lookup failed for %s", requirements.project_name)
            await self._planning_failed(f"Template engine failed: {exc}", exc)
        if not templates:
            await self._planning_failed(
                f"No template available for {requirements.language.value}/"
                f"{requirements.framework.value}"
            )
        template = templates[0]

        try:
            planned_files = tuple(
                await self.template_engine.get_planned_files(template, requirements)
            )
        except Exception as exc:
            logger.exception("Listing planned files failed for %s", template.template_id)
            await self._planning_failed(f"Template engine failed: {exc}", exc)

        pipeline = await self._plan_pipeline(requirements)
        repository = RepositoryDetails(
            name=requirements.project_name,
            owner=self._owner(requirements),
            visibility=requirements.visibility.value,
            default_branch=self.settings.default_branch,
        )

        steps = build_execution_steps(requirements, template, planned_files, repository, pipeline)
        summary = build_plan_summary(requirements, template, planned_files, repository, pipeline)
        draft = ExecutionPlan(
            requirements=requirements,
            template=template,
            planned_files=planned_files,
            repository=repository,
            pipeline=pipeline,
            policy_results=(),
            steps=steps,
            summary=summary,
        )

        policy_results = await self._check_policies(requirements, draft)
        plan = dataclasses.replace(draft, policy_results=policy_results)
        failed_policies = [result.policy_id for result in policy_results if not result.passed]
        if failed_policies:
            logger.warning("Plan %s has policy findings: %s", plan.id, ", ".join(failed_policies))

        await self.audit.log_action(
            "create_plan",
            ExecutionPhase.PLANNING,
            ActionResult.SUCCESS,
            f"Plan {plan.id} with {len(plan.steps)} steps",
            {"template": template.template_id, "steps": len(plan.steps)},
        )
        return plan

    async def _planning_failed(self, message: str, cause: Exception | None = None) -> NoReturn:
        await self.audit.log_action(
            "create_plan", ExecutionPhase.PLANNING, ActionResult.FAILURE, message
        )
        raise PlanningError(message) from cause

    async def _check_policies(
        self, requirements: ProjectRequirements, draft: ExecutionPlan
    ) -> tuple[PolicyValidationResult, ...]:
        # Advisory only: a broken policy engine becomes a warning on the plan.
        try:
            return tuple(await self.policy_engine.validate_plan(requirements, draft))
        except Exception as exc:
            logger.exception("Policy check failed for plan %s", draft.id)
            return (
                PolicyValidationResult(
                    policy_id="policy-check",
                    policy_name="Policy check",
                    passed=False,
                    message=f"Policy check unavailable: {exc}",
                    severity="warning",
                ),
            )

    async def _plan_pipeline(self, requirements: ProjectRequirements) -> PipelineDefinition | None:
        if not self.settings.generate_ci_cd:
            return None
        generator = self._pipeline_generator(requirements.scm_platform)
        if generator is None:
            logger.info("No pipeline generator for %s", requirements.scm_platform.display_name)
            return None

        try:
            generated = await generator.generate_pipeline(requirements)
        except Exception:
            logger.exception("Pipeline generator failed for %s", requirements.project_name)
            return None
        if not generated.success:
            logger.warning("Pipeline generation failed: %s", generated.error_message)
            return None
        return PipelineDefinition(
            file_name=generated.file_name,
            file_path=generated.file_path,
            trigger_description=generated.description,
            build_steps=tuple(generated.build_steps),
        )

    def _pipeline_generator(self, platform: ScmPlatform) -> PipelineGenerator | None:
        wanted_format = (
            self.settings.azure_devops_pipeline_format
            if platform == ScmPlatform.AZURE_DEVOPS
            else None
        )
        for generator in self.pipeline_generators:
            if generator.platform != platform:
                continue
            if wanted_format is None or generator.format in (None, wanted_format):
                return generator
        return None

    def _owner(self, requirements: ProjectRequirements) -> str:
        if requirements.scm_platform == ScmPlatform.AZURE_DEVOPS:
            return self.settings.azure_devops_project or requirements.project_name
        return self.settings.github_owner

    def _credentials(self, platform: ScmPlatform) -> GitCredentials:
        if platform == ScmPlatform.AZURE_DEVOPS:
            return GitCredentials(username="pat", password=self.settings.azure_devops_token or "")
        return GitCredentials(
            username=self.settings.github_owner, password=self.settings.github_token or ""
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def build_workflow(self, plan: ExecutionPlan) -> SequentialWorkflow:
        """One workflow step per plan step, in plan order."""
        platform = plan.requirements.scm_platform
        generator = self._pipeline_generator(platform) if plan.pipeline is not None else None
        steps: list[WorkflowStep] = [
            SelectTemplateStep(),
            ScaffoldStep(self.template_engine, self.filesystem, generator),
            CreateRepositoryStep(self.scm),
            InitCommitStep(
                self.git, self.settings.commit_author_name, self.settings.commit_author_email
            ),
            PushStep(self.git, self._credentials(platform)),
        ]
        if plan.pipeline is not None:
            steps.append(TriggerPipelineStep(self.scm))
            steps.append(
                VerifyPipelineStep(
                    self.scm,
                    attempts=self.settings.ci_poll_attempts,
                    interval=self.settings.ci_poll_interval_seconds,
                    sleep=self.sleep,
                )
            )
        return SequentialWorkflow(name="execute_plan", steps=steps)

    @asynccontextmanager
    async def _workspace(self, plan: ExecutionPlan) -> AsyncIterator[str]:
        path = await self.filesystem.create_workspace(f"crisp-{plan.requirements.project_name}-")
        logger.debug("Workspace %s acquired for plan %s", path, plan.id)
        try:
            yield path
        finally:
            try:
                await self.filesystem.cleanup_workspace(path)
            except Exception as exc:
                error = CleanupError(f"Failed to clean up workspace {path}: {exc}")
                logger.warning("%s", error, exc_info=exc)

    async def execute_plan(
        self, plan: ExecutionPlan, stream: EventStream | None = None
    ) -> DeliveryResult:
        """Run an approved plan. Step failures come back as a failed DeliveryResult.

        With a stream, the run ends with ``delivery_ready`` on success or
        ``error`` on failure. Cancellation publishes nothing and propagates.
        """
        if not plan.is_approved:
            raise UsageError(f"Plan {plan.id} must be approved before execution")

        result = await self._run_plan(plan, stream)
        if stream is not None:
            if result.success:
                stream.publish(events.delivery_ready(result.delivery_card()))
            else:
                stream.publish(events.error(result.error_message or "Unknown error"))
        return result

    async def _run_plan(self, plan: ExecutionPlan, stream: EventStream | None) -> DeliveryResult:
        platform = plan.requirements.scm_platform
        branch = plan.repository.default_branch
        workflow = self.build_workflow(plan)
        logger.info("Executing plan %s (%d steps)", plan.id, len(plan.steps))

        try:
            async with self._workspace(plan) as workspace:
                ctx = WorkflowContext(
                    plan=plan, workspace=workspace, audit_logger=self.audit, events=stream
                )
                outcome = await workflow.execute(ctx)
                if not outcome.ok:
                    message = outcome.error or "Execution failed"
                    logger.error("Plan %s failed at %s: %s", plan.id, outcome.failed_step, message)
                    await self.audit.log_action(
                        "execute_plan",
                        ExecutionPhase.EXECUTION,
                        ActionResult.FAILURE,
                        message,
                        {"failed_step": outcome.failed_step},
                    )
                    return DeliveryResult.failed(platform.display_name, branch, message)
                result = self._delivery_result(plan, ctx.get("pipeline_url"), ctx.get("build_status"))
        except Exception as exc:
            logger.exception("Plan %s execution failed", plan.id)
            await self.audit.log_action(
                "execute_plan", ExecutionPhase.EXECUTION, ActionResult.FAILURE, str(exc)
            )
            return DeliveryResult.failed(platform.display_name, branch, str(exc))

        await self.audit.log_action(
            "execute_plan",
            ExecutionPhase.DELIVERY,
            ActionResult.SUCCESS,
            f"Delivered {result.repository_url}",
            {"build_status": result.build_status},
        )
        await self._run_post_delivery_hook(plan, result)
        return result

    def _delivery_result(
        self, plan: ExecutionPlan, pipeline_url: str | None, build_status: str | None
    ) -> DeliveryResult:
        platform = plan.requirements.scm_platform
        repository = plan.repository
        is_azure = platform == ScmPlatform.AZURE_DEVOPS
        return DeliveryResult.succeeded(
            platform,
            repository.default_branch,
            repository.url or "",
            repository.clone_url or "",
            pipeline_url=pipeline_url,
            build_status=build_status,
            collection_url=self.settings.azure_devops_collection_url if is_azure else None,
            project_name=repository.owner if is_azure else None,
            summary_card=summary_card(plan, pipeline_url, build_status),
        )

    async def _run_post_delivery_hook(self, plan: ExecutionPlan, result: DeliveryResult) -> None:
        if self.post_delivery_hook is None:
            return
        try:
            await self.post_delivery_hook(plan, result)
        except Exception:
            logger.exception("Post-delivery hook failed for plan %s", plan.id)

    # ------------------------------------------------------------------
    # Convenience entry points
    # ------------------------------------------------------------------

    async def scaffold_project(
        self,
        requirements: ProjectRequirements,
        auto_approve: bool = False,
        approver: PlanApprover | None = None,
        stream: EventStream | None = None,
    ) -> DeliveryResult:
        """Plan, approve and execute in one call.

        Without ``auto_approve`` the plan is published as ``plan_ready`` and
        handed to ``approver``; if nobody approves, execution raises UsageError.
        """
        plan = await self.create_plan(requirements)
        if auto_approve:
            plan.approve()
        else:
            if stream is not None:
                stream.publish(events.plan_ready(plan.to_dict()))
            if approver is not None and await approver(plan):
                plan.approve()
        return await self.execute_plan(plan, stream)

    async def validate_configuration(self) -> list[str]:
        """Human-readable configuration problems. An empty list means healthy."""
        return await check_configuration(self.settings, self.scm)


def default_orchestrator(
    settings: Settings,
    template_engine: TemplateEngine,
    pipeline_generators: list[PipelineGenerator],
    scm_provider: SourceControlProvider,
    *,
    session_id: str | None = None,
    policy_engine: PolicyEngine | None = None,
    post_delivery_hook: PostDeliveryHook | None = None,
) -> Orchestrator:
    """Orchestrator wired with the local git CLI, filesystem and in-memory audit log."""
    from .audit import InMemoryAuditLogger
    from .git import GitCli
    from .policy import RulePolicyEngine
    from .workspace import LocalFilesystem

    return Orchestrator(
        settings=settings,
        template_engine=template_engine,
        pipeline_generators=pipeline_generators,
        scm_provider=scm_provider,
        git=GitCli(),
        filesystem=LocalFilesystem(settings.workspace_directory),
        audit_logger=InMemoryAuditLogger(session_id, agent_id="orchestrator"),
        policy_engine=policy_engine or RulePolicyEngine(),
        post_delivery_hook=post_delivery_hook,
    )


async def check_configuration(
    settings: Settings, scm: SourceControlProvider | None
) -> list[str]:
    """Missing credentials first; the live connectivity check only runs when they are complete."""
    problems: list[str] = []
    platform = settings.scm_platform

    if platform == ScmPlatform.GITHUB:
        if not settings.github_owner:
            problems.append("GitHub owner is not configured (CRISP_GITHUB_OWNER)")
        if not settings.github_token:
            problems.append("GitHub token is not configured (CRISP_GITHUB_TOKEN)")
    else:
        if not settings.azure_devops_server_url:
            problems.append(
                "Azure DevOps server URL is not configured (CRISP_AZURE_DEVOPS_SERVER_URL)"
            )
        if not settings.azure_devops_token:
            problems.append("Azure DevOps token is not configured (CRISP_AZURE_DEVOPS_TOKEN)")

    if scm is None:
        problems.append(f"No source-control provider available for {platform.display_name}")
    elif scm.platform != platform:
        problems.append(
            f"Configured platform is {platform.display_name} but the provider "
            f"targets {scm.platform.display_name}"
        )

    if not problems and scm is not None:
        try:
            if not await scm.validate_connection():
                problems.append(f"Cannot connect to {platform.display_name}")
        except Exception as exc:
            problems.append(f"{platform.display_name} connection check failed: {exc}")

    return problems


def summary_card(plan: ExecutionPlan, pipeline_url: str | None, build_status: str | None) -> str:
    repository = plan.repository
    platform = plan.requirements.scm_platform
    lines: list[str] = [
        f"{plan.requirements.project_name} is ready on {platform.display_name}.",
        "",
        f"Repository: {repository.url}",
        f"Branch: {repository.default_branch}",
    ]
    if pipeline_url:
        lines.append(f"Pipeline: {pipeline_url}")
    if build_status:
        lines.append(f"Build status: {build_status}")
    lines.extend(
        [
            "",
            f"Open in VS Code (web): {vscode_web_url(repository.url or '', platform)}",
            f"Clone in VS Code: {vscode_clone_url(repository.clone_url or '')}",
        ]
    )
    return "\n".join(lines)


def plan_card(plan: ExecutionPlan) -> dict[str, Any]:
    """Compact plan view attached to assistant messages."""
    return {
        "plan_id": str(plan.id),
        "summary": plan.summary,
        "steps": [step.to_dict() for step in plan.steps],
        "policy_results": [result.to_dict() for result in plan.policy_results],
    }
