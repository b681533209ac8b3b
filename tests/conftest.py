"""Shared test fixtures and collaborator fakes."""

import asyncio
from collections.abc import AsyncGenerator, Callable
from typing import Any

import pytest
import pytest_asyncio

from crisp import db
from crisp.audit import InMemoryAuditLogger
from crisp.config import Settings
from crisp.events import AgentEvent, EventSubscription
from crisp.interfaces import (
    FilesystemOperations,
    GitCredentials,
    GitOperations,
    IntakeAgent,
    IntakeReply,
    PipelineGenerationResult,
    PipelineGenerator,
    SourceControlProvider,
    TemplateEngine,
)
from crisp.orchestrator import Orchestrator
from crisp.persistence import SessionStore
from crisp.plan import (
    PipelineFormat,
    PlannedFile,
    ProjectFramework,
    ProjectLanguage,
    ProjectRequirements,
    RepositoryDetails,
    RepositoryVisibility,
    ScaffoldingResult,
    ScmPlatform,
    TemplateSelection,
)
from crisp.policy import RulePolicyEngine
from crisp.session import CrispSession


class FakeTemplateEngine(TemplateEngine):
    def __init__(
        self,
        supported: set[tuple[ProjectLanguage, ProjectFramework]] | None = None,
        scaffold_success: bool = True,
    ) -> None:
        self.supported = supported or {(ProjectLanguage.PYTHON, ProjectFramework.FASTAPI)}
        self.scaffold_success = scaffold_success
        self.scaffolded: list[str] = []

    async def get_available_templates(
        self, requirements: ProjectRequirements
    ) -> list[TemplateSelection]:
        if (requirements.language, requirements.framework) not in self.supported:
            return []
        return [
            TemplateSelection(
                template_id=f"{requirements.language.value}-{requirements.framework.value}",
                name=f"{requirements.framework.value} service",
                version="1.0.0",
            )
        ]

    async def get_planned_files(
        self, template: TemplateSelection, requirements: ProjectRequirements
    ) -> list[PlannedFile]:
        return [
            PlannedFile("src", is_directory=True),
            PlannedFile("src/main.py"),
            PlannedFile("README.md"),
            PlannedFile(".gitignore"),
        ]

    async def scaffold_project(
        self,
        template: TemplateSelection,
        requirements: ProjectRequirements,
        output_path: str,
    ) -> ScaffoldingResult:
        self.scaffolded.append(output_path)
        if not self.scaffold_success:
            return ScaffoldingResult(False, output_path, error_message="template render failed")
        return ScaffoldingResult(True, output_path, created_files=["src/main.py", "README.md"])


class FakePipelineGenerator(PipelineGenerator):
    def __init__(
        self,
        platform: ScmPlatform = ScmPlatform.GITHUB,
        format: PipelineFormat | None = None,
        file_path: str = ".github/workflows/ci.yml",
    ) -> None:
        self.platform = platform
        self.format = format
        self.file_path = file_path
        self.calls = 0

    async def generate_pipeline(self, requirements: ProjectRequirements) -> PipelineGenerationResult:
        self.calls += 1
        return PipelineGenerationResult(
            success=True,
            content="name: CI\non: [push]\n",
            file_name=self.file_path.rsplit("/", 1)[-1],
            file_path=self.file_path,
            description="Runs on push to main",
            build_steps=("install", "lint", "test"),
        )


class FakeScm(SourceControlProvider):
    def __init__(
        self,
        platform: ScmPlatform = ScmPlatform.GITHUB,
        statuses: list[tuple[str, str | None] | Exception] | None = None,
        base_url: str = "https://github.com/acme",
    ) -> None:
        self.platform = platform
        self.base_url = base_url
        self.statuses = list(statuses or [("completed", "success")])
        self.created: list[str] = []
        self.triggered: list[tuple[str, str | None, str]] = []
        self.polls = 0
        self.connection_ok = True
        self.validate_calls = 0
        self.create_error: Exception | None = None
        self.trigger_error: Exception | None = None
        self.block_create: asyncio.Event | None = None

    async def create_repository(
        self,
        name: str,
        description: str | None,
        visibility: RepositoryVisibility,
    ) -> RepositoryDetails:
        if self.block_create is not None:
            await self.block_create.wait()
        if self.create_error is not None:
            raise self.create_error
        self.created.append(name)
        return RepositoryDetails(
            name=name,
            owner="acme",
            visibility=visibility.value,
            default_branch="main",
            url=f"{self.base_url}/{name}",
            clone_url=f"{self.base_url}/{name}.git",
        )

    async def trigger_pipeline(
        self, repository_name: str, pipeline_id: str | None, branch_name: str
    ) -> tuple[str, str]:
        if self.trigger_error is not None:
            raise self.trigger_error
        self.triggered.append((repository_name, pipeline_id, branch_name))
        return f"{self.base_url}/{repository_name}/actions/runs/42", "42"

    async def get_pipeline_status(
        self, repository_name: str, run_id: str
    ) -> tuple[str, str | None]:
        self.polls += 1
        status = self.statuses[min(self.polls, len(self.statuses)) - 1]
        if isinstance(status, Exception):
            raise status
        return status

    async def validate_connection(self) -> bool:
        self.validate_calls += 1
        return self.connection_ok


class FakeGit(GitOperations):
    def __init__(self) -> None:
        self.calls: list[tuple[str, ...]] = []
        self.credentials: GitCredentials | None = None

    async def initialize_repository(self, path: str, default_branch: str = "main") -> None:
        self.calls.append(("init", path, default_branch))

    async def stage_all(self, path: str) -> None:
        self.calls.append(("add", path))

    async def commit(self, path: str, message: str, author_name: str, author_email: str) -> str:
        self.calls.append(("commit", path, author_name, author_email))
        return "0123456789abcdef"

    async def add_remote(self, path: str, remote_name: str, remote_url: str) -> None:
        self.calls.append(("remote", remote_name, remote_url))

    async def push(
        self, path: str, remote_name: str, branch_name: str, credentials: GitCredentials
    ) -> None:
        self.credentials = credentials
        self.calls.append(("push", remote_name, branch_name))


class FakeFilesystem(FilesystemOperations):
    def __init__(self) -> None:
        self.workspaces: list[str] = []
        self.cleaned: list[str] = []
        self.directories: list[str] = []
        self.files: dict[str, str] = {}
        self.cleanup_error: Exception | None = None

    async def create_workspace(self, prefix: str) -> str:
        path = f"/tmp/{prefix}{len(self.workspaces)}"
        self.workspaces.append(path)
        return path

    async def create_directory(self, path: str) -> None:
        self.directories.append(path)

    async def write_file(self, path: str, content: str) -> None:
        self.files[path] = content

    async def read_file(self, path: str) -> str:
        return self.files[path]

    async def cleanup_workspace(self, workspace_path: str) -> None:
        if self.cleanup_error is not None:
            raise self.cleanup_error
        self.cleaned.append(workspace_path)


class ScriptedIntake(IntakeAgent):
    """Asks for details until a message mentions creating or changing the project."""

    def __init__(self, requirements: ProjectRequirements) -> None:
        self.requirements = requirements
        self.received: list[str] = []

    async def respond(self, session: CrispSession, content: str) -> IntakeReply:
        self.received.append(content)
        lowered = content.lower()
        if "create" in lowered or "changes" in lowered:
            return IntakeReply("Here is what I will build.", self.requirements)
        return IntakeReply("What should the project be called?")


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class Collaborators:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.templates = FakeTemplateEngine()
        self.pipelines: list[PipelineGenerator] = [FakePipelineGenerator()]
        self.scm = FakeScm()
        self.git = FakeGit()
        self.filesystem = FakeFilesystem()
        self.audit = InMemoryAuditLogger("test-session")
        self.policy = RulePolicyEngine()
        self.sleep = RecordingSleep()
        self.post_delivery_hook: Callable[..., Any] | None = None

    def orchestrator(self, **overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "settings": self.settings,
            "template_engine": self.templates,
            "pipeline_generators": self.pipelines,
            "scm_provider": self.scm,
            "git": self.git,
            "filesystem": self.filesystem,
            "audit_logger": self.audit,
            "policy_engine": self.policy,
            "post_delivery_hook": self.post_delivery_hook,
            "sleep": self.sleep,
        }
        kwargs.update(overrides)
        return Orchestrator(**kwargs)


def make_settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "scm_platform": ScmPlatform.GITHUB,
        "github_owner": "acme",
        "github_token": "ghp_test",
        "azure_devops_server_url": "https://ado.example.com/tfs",
        "azure_devops_collection": "DefaultCollection",
        "azure_devops_token": "ado-pat",
        "ci_poll_attempts": 3,
        "ci_poll_interval_seconds": 10.0,
        "redis_events_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_requirements(**overrides: Any) -> ProjectRequirements:
    values: dict[str, Any] = {
        "project_name": "widgets",
        "language": ProjectLanguage.PYTHON,
        "framework": ProjectFramework.FASTAPI,
        "runtime_version": "3.12",
        "description": "Widget service",
    }
    values.update(overrides)
    return ProjectRequirements(**values)


async def drain(subscription: EventSubscription) -> list[AgentEvent]:
    """Everything already queued on a subscription, without waiting for more."""
    received: list[AgentEvent] = []
    while subscription.pending:
        received.append(await anext(subscription))
    return received


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def requirements() -> ProjectRequirements:
    return make_requirements()


@pytest.fixture
def collaborators(settings: Settings) -> Collaborators:
    return Collaborators(settings)


@pytest_asyncio.fixture
async def store(tmp_path) -> AsyncGenerator[SessionStore]:
    engine = db.create_engine(f"sqlite+aiosqlite:///{tmp_path / 'sessions.db'}")
    session_store = SessionStore(engine)
    await session_store.create_all()
    yield session_store
    await engine.dispose()
