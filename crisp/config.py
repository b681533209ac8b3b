"""Configuration settings for the scaffolding engine."""

import tempfile
from pathlib import Path

from pydantic_settings import BaseSettings

from .plan import PipelineFormat, RepositoryVisibility, ScmPlatform


def _default_workspace_dir() -> Path:
    return Path(tempfile.gettempdir()) / "crisp-workspaces"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    scm_platform: ScmPlatform = ScmPlatform.GITHUB

    # GitHub
    github_owner: str = ""
    github_token: str | None = None
    github_api_base_url: str = "https://api.github.com"
    github_visibility: RepositoryVisibility = RepositoryVisibility.PRIVATE

    # Azure DevOps Server (on-prem)
    azure_devops_server_url: str = ""
    azure_devops_collection: str = "DefaultCollection"
    azure_devops_project: str | None = None
    azure_devops_token: str | None = None
    azure_devops_pipeline_format: PipelineFormat = PipelineFormat.YAML

    # Common
    default_branch: str = "main"
    generate_ci_cd: bool = True
    workspace_directory: Path = _default_workspace_dir()
    commit_author_name: str = "CRISP Agent"
    commit_author_email: str = "crisp@scaffold.local"

    # CI verification polling
    ci_poll_attempts: int = 3
    ci_poll_interval_seconds: float = 10.0

    # Sessions
    session_autosave_seconds: float = 5.0
    event_backlog_limit: int = 1000

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "crisp"
    db_user: str = "crisp"
    db_password: str = "crisp"
    database_url_override: str | None = None

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    redis_events_enabled: bool = False

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        if self.database_url_override:
            return self.database_url_override
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def azure_devops_collection_url(self) -> str:
        return f"{self.azure_devops_server_url.rstrip('/')}/{self.azure_devops_collection}"

    class Config:
        env_prefix = "CRISP_"
        env_file = ".env"


# Global settings instance
settings = Settings()
