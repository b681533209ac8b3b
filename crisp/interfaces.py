"""
Collaborator interfaces consumed by the orchestrator.

Concrete template engines, pipeline generators and platform clients live
outside the core; the orchestrator only sees these abstractions and selects
among registered variants by first match, in the order they were given.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from .plan import (
    ActionResult,
    DeliveryResult,
    ExecutionPhase,
    ExecutionPlan,
    PipelineFormat,
    PlannedFile,
    PolicyValidationResult,
    ProjectRequirements,
    RepositoryDetails,
    RepositoryVisibility,
    ScaffoldingResult,
    ScmPlatform,
    TemplateSelection,
)

if TYPE_CHECKING:
    from .session import CrispSession


@dataclass(frozen=True)
class PipelineGenerationResult:
    success: bool
    content: str
    file_name: str
    file_path: str
    description: str = ""
    build_steps: tuple[str, ...] = ()
    error_message: str | None = None


@dataclass(frozen=True)
class GitCredentials:
    username: str
    password: str = field(repr=False)


@dataclass(frozen=True)
class IntakeReply:
    """What the conversational layer answered, plus requirements once it has enough."""

    content: str
    requirements: ProjectRequirements | None = None


class TemplateEngine(ABC):
    @abstractmethod
    async def get_available_templates(
        self, requirements: ProjectRequirements
    ) -> list[TemplateSelection]:
        """Templates whose capability predicate matches, in registration order."""

    @abstractmethod
    async def get_planned_files(
        self, template: TemplateSelection, requirements: ProjectRequirements
    ) -> list[PlannedFile]:
        pass

    @abstractmethod
    async def scaffold_project(
        self,
        template: TemplateSelection,
        requirements: ProjectRequirements,
        output_path: str,
    ) -> ScaffoldingResult:
        pass


class PipelineGenerator(ABC):
    platform: ScmPlatform
    format: PipelineFormat | None = None

    @abstractmethod
    async def generate_pipeline(self, requirements: ProjectRequirements) -> PipelineGenerationResult:
        pass


class SourceControlProvider(ABC):
    platform: ScmPlatform

    @abstractmethod
    async def create_repository(
        self,
        name: str,
        description: str | None,
        visibility: RepositoryVisibility,
    ) -> RepositoryDetails:
        pass

    @abstractmethod
    async def trigger_pipeline(
        self, repository_name: str, pipeline_id: str | None, branch_name: str
    ) -> tuple[str, str]:
        """Start a run. Returns (run_url, run_id)."""

    @abstractmethod
    async def get_pipeline_status(
        self, repository_name: str, run_id: str
    ) -> tuple[str, str | None]:
        """Returns (status, conclusion)."""

    @abstractmethod
    async def validate_connection(self) -> bool:
        pass


class GitOperations(ABC):
    @abstractmethod
    async def initialize_repository(self, path: str, default_branch: str = "main") -> None:
        pass

    @abstractmethod
    async def stage_all(self, path: str) -> None:
        pass

    @abstractmethod
    async def commit(self, path: str, message: str, author_name: str, author_email: str) -> str:
        pass

    @abstractmethod
    async def add_remote(self, path: str, remote_name: str, remote_url: str) -> None:
        pass

    @abstractmethod
    async def push(
        self, path: str, remote_name: str, branch_name: str, credentials: GitCredentials
    ) -> None:
        pass


class FilesystemOperations(ABC):
    @abstractmethod
    async def create_workspace(self, prefix: str) -> str:
        pass

    @abstractmethod
    async def create_directory(self, path: str) -> None:
        pass

    @abstractmethod
    async def write_file(self, path: str, content: str) -> None:
        pass

    @abstractmethod
    async def read_file(self, path: str) -> str:
        pass

    @abstractmethod
    async def cleanup_workspace(self, workspace_path: str) -> None:
        pass


class AuditLogger(ABC):
    session_id: str

    @abstractmethod
    async def log_action(
        self,
        action: str,
        phase: ExecutionPhase,
        result: ActionResult,
        detail: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        pass


class PolicyEngine(ABC):
    @abstractmethod
    async def validate_plan(
        self, requirements: ProjectRequirements, plan: ExecutionPlan
    ) -> list[PolicyValidationResult]:
        """Advisory results. Never blocks plan creation."""


class IntakeAgent(ABC):
    @abstractmethod
    async def respond(self, session: CrispSession, content: str) -> IntakeReply:
        pass


PostDeliveryHook = Callable[[ExecutionPlan, DeliveryResult], Awaitable[None]]
PlanApprover = Callable[[ExecutionPlan], Awaitable[bool]]
