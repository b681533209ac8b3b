"""Execution plan model: what will be scaffolded, pushed and verified."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from .errors import UsageError


class ScmPlatform(StrEnum):
    GITHUB = "github"
    AZURE_DEVOPS = "azure_devops"

    @property
    def display_name(self) -> str:
        return {"github": "GitHub", "azure_devops": "Azure DevOps"}[self.value]


class PipelineFormat(StrEnum):
    YAML = "yaml"
    XAML = "xaml"


class RepositoryVisibility(StrEnum):
    PRIVATE = "private"
    PUBLIC = "public"
    INTERNAL = "internal"


class ProjectLanguage(StrEnum):
    CSHARP = "csharp"
    TYPESCRIPT = "typescript"
    JAVASCRIPT = "javascript"
    PYTHON = "python"
    JAVA = "java"
    GO = "go"
    RUST = "rust"
    CPP = "cpp"
    DART = "dart"


class ProjectFramework(StrEnum):
    ASPNETCORE_WEBAPI = "aspnetcore_webapi"
    ASPNETCORE_MINIMAL_API = "aspnetcore_minimal_api"
    CONSOLE_APP = "console_app"
    WORKER_SERVICE = "worker_service"
    NEXTJS = "nextjs"
    REACT = "react"
    VUE = "vue"
    EXPRESS = "express"
    NESTJS = "nestjs"
    FASTAPI = "fastapi"
    FLASK = "flask"
    DJANGO = "django"
    SPRING_BOOT = "spring_boot"
    QUARKUS = "quarkus"
    GIN = "gin"
    ECHO = "echo"
    ACTIX = "actix"
    AXUM = "axum"
    CPP_CMAKE = "cpp_cmake"
    DART_SHELF = "dart_shelf"


class ExecutionPhase(StrEnum):
    INTAKE = "intake"
    PLANNING = "planning"
    EXECUTION = "execution"
    DELIVERY = "delivery"


class ActionResult(StrEnum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    PENDING = "pending"


# Operation identifiers, in plan order.
OP_TEMPLATE_SELECT = "template.select"
OP_SCAFFOLD = "filesystem.scaffold"
OP_CREATE_REPOSITORY = "scm.create_repository"
OP_INIT_COMMIT = "git.init_commit"
OP_PUSH = "git.push"
OP_TRIGGER_PIPELINE = "scm.trigger_pipeline"
OP_VERIFY_PIPELINE = "scm.verify_pipeline"


@dataclass(frozen=True)
class ProjectRequirements:
    """Structured project request produced by intake."""

    project_name: str
    language: ProjectLanguage
    framework: ProjectFramework
    runtime_version: str = ""
    description: str | None = None
    scm_platform: ScmPlatform = ScmPlatform.GITHUB
    visibility: RepositoryVisibility = RepositoryVisibility.PRIVATE
    include_container_support: bool = False
    testing_framework: str | None = None
    linting_tools: tuple[str, ...] = ()
    additional_tooling: tuple[str, ...] = ()
    custom_configuration: dict[str, str] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "project_name": self.project_name,
            "description": self.description,
            "language": self.language.value,
            "framework": self.framework.value,
            "runtime_version": self.runtime_version,
            "scm_platform": self.scm_platform.value,
            "visibility": self.visibility.value,
            "include_container_support": self.include_container_support,
            "testing_framework": self.testing_framework,
            "linting_tools": list(self.linting_tools),
            "additional_tooling": list(self.additional_tooling),
        }


@dataclass(frozen=True)
class TemplateSelection:
    template_id: str
    name: str
    version: str
    source: str = "built-in"


@dataclass(frozen=True)
class PlannedFile:
    relative_path: str
    is_directory: bool = False
    description: str | None = None
    template_file: str | None = None


@dataclass
class RepositoryDetails:
    """Repository descriptor. `url` and `clone_url` are filled during execution."""

    name: str
    owner: str
    visibility: str
    default_branch: str
    url: str | None = None
    clone_url: str | None = None


@dataclass(frozen=True)
class PipelineDefinition:
    file_name: str
    file_path: str
    trigger_description: str
    build_steps: tuple[str, ...] = ()


@dataclass(frozen=True)
class PolicyValidationResult:
    policy_id: str
    policy_name: str
    passed: bool
    message: str
    severity: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_id": self.policy_id,
            "policy_name": self.policy_name,
            "passed": self.passed,
            "message": self.message,
            "severity": self.severity,
        }


@dataclass
class ExecutionStep:
    step_number: int
    description: str
    operation: str
    is_completed: bool = False
    result: str | None = None

    @property
    def status(self) -> str:
        if self.is_completed:
            return "completed"
        if self.result:
            return "failed"
        return "pending"

    def to_dict(self) -> dict[str, Any]:
        return {
            "number": self.step_number,
            "description": self.description,
            "operation": self.operation,
            "status": self.status,
            "result": self.result,
        }


@dataclass
class ScaffoldingResult:
    success: bool
    workspace_path: str
    created_files: list[str] = field(default_factory=list)
    error_message: str | None = None
    warnings: list[str] = field(default_factory=list)


@dataclass
class ExecutionPlan:
    """What will be built. Only `repository` URLs and the approval flag change after creation."""

    requirements: ProjectRequirements
    template: TemplateSelection
    planned_files: tuple[PlannedFile, ...]
    repository: RepositoryDetails
    pipeline: PipelineDefinition | None
    policy_results: tuple[PolicyValidationResult, ...]
    steps: tuple[ExecutionStep, ...]
    summary: str
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    is_approved: bool = False

    def approve(self) -> None:
        if self.is_approved:
            raise UsageError(f"Plan {self.id} is already approved")
        self.is_approved = True

    def step(self, operation: str) -> ExecutionStep:
        for step in self.steps:
            if step.operation == operation:
                return step
        raise KeyError(operation)

    def has_step(self, operation: str) -> bool:
        return any(step.operation == operation for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "project_name": self.requirements.project_name,
            "summary": self.summary,
            "is_approved": self.is_approved,
            "created_at": self.created_at.isoformat(),
            "steps": [step.to_dict() for step in self.steps],
            "policy_results": [result.to_dict() for result in self.policy_results],
        }


@dataclass(frozen=True)
class DeliveryResult:
    """Caller-facing outcome of a plan execution."""

    success: bool
    platform: str
    default_branch: str
    repository_url: str = ""
    clone_url: str = ""
    pipeline_url: str | None = None
    build_status: str | None = None
    vscode_web_url: str = ""
    vscode_clone_url: str = ""
    collection_url: str | None = None
    project_name: str | None = None
    summary_card: str = ""
    error_message: str | None = None

    def __post_init__(self) -> None:
        if self.success and not (self.repository_url and self.clone_url):
            raise ValueError("A successful delivery requires repository and clone URLs")
        if not self.success and not self.error_message:
            raise ValueError("A failed delivery requires an error message")

    @classmethod
    def succeeded(
        cls,
        platform: ScmPlatform,
        default_branch: str,
        repository_url: str,
        clone_url: str,
        *,
        pipeline_url: str | None = None,
        build_status: str | None = None,
        collection_url: str | None = None,
        project_name: str | None = None,
        summary_card: str = "",
    ) -> DeliveryResult:
        from .links import vscode_clone_url, vscode_web_url

        return cls(
            success=True,
            platform=platform.display_name,
            default_branch=default_branch,
            repository_url=repository_url,
            clone_url=clone_url,
            pipeline_url=pipeline_url,
            build_status=build_status,
            vscode_web_url=vscode_web_url(repository_url, platform),
            vscode_clone_url=vscode_clone_url(clone_url),
            collection_url=collection_url,
            project_name=project_name,
            summary_card=summary_card,
        )

    @classmethod
    def failed(cls, platform: str, default_branch: str, error_message: str) -> DeliveryResult:
        message = error_message or "Unknown error"
        return cls(
            success=False,
            platform=platform,
            default_branch=default_branch,
            error_message=message,
            summary_card=f"Execution failed: {message}",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "platform": self.platform,
            "repository_url": self.repository_url,
            "clone_url": self.clone_url,
            "default_branch": self.default_branch,
            "pipeline_url": self.pipeline_url,
            "build_status": self.build_status,
            "vscode_web_url": self.vscode_web_url,
            "vscode_clone_url": self.vscode_clone_url,
            "collection_url": self.collection_url,
            "project_name": self.project_name,
            "summary_card": self.summary_card,
            "error_message": self.error_message,
        }

    def delivery_card(self) -> dict[str, Any]:
        return {
            "platform": self.platform,
            "repository_url": self.repository_url,
            "branch": self.default_branch,
            "pipeline_url": self.pipeline_url,
            "build_status": self.build_status or "N/A",
            "vscode_web_url": self.vscode_web_url,
            "vscode_clone_url": self.vscode_clone_url,
        }


def build_execution_steps(
    requirements: ProjectRequirements,
    template: TemplateSelection,
    planned_files: tuple[PlannedFile, ...],
    repository: RepositoryDetails,
    pipeline: PipelineDefinition | None,
) -> tuple[ExecutionStep, ...]:
    """Assemble the ordered step list. Five steps, seven when a pipeline is planned."""
    specs = [
        (f"Select template: {template.name}", OP_TEMPLATE_SELECT),
        (f"Create workspace and scaffold {len(planned_files)} files", OP_SCAFFOLD),
        (
            f"Create {requirements.scm_platform.display_name} repository: "
            f"{repository.owner}/{repository.name}",
            OP_CREATE_REPOSITORY,
        ),
        ("Initialize Git and create initial commit", OP_INIT_COMMIT),
        (f"Push to {repository.default_branch} branch", OP_PUSH),
    ]
    if pipeline is not None:
        specs.append(("Trigger initial CI/CD pipeline run", OP_TRIGGER_PIPELINE))
        specs.append(("Verify CI/CD pipeline passes", OP_VERIFY_PIPELINE))

    return tuple(
        ExecutionStep(step_number=number, description=description, operation=operation)
        for number, (description, operation) in enumerate(specs, start=1)
    )


def build_plan_summary(
    requirements: ProjectRequirements,
    template: TemplateSelection,
    planned_files: tuple[PlannedFile, ...],
    repository: RepositoryDetails,
    pipeline: PipelineDefinition | None,
) -> str:
    lines = [
        f"Execution Plan for: {requirements.project_name}",
        "",
        f"1. Template: {template.name} v{template.version}",
        f"2. Files to create: {len(planned_files)} files/directories",
        f"3. Repository: {repository.owner}/{repository.name} ({repository.visibility})",
        f"4. Branch: {repository.default_branch}",
    ]
    if pipeline is not None:
        lines.append(f"5. CI/CD: {pipeline.file_name}")
        if pipeline.build_steps:
            lines.append(f"   Steps: {' -> '.join(pipeline.build_steps)}")
    return "\n".join(lines)
