"""GitHub source-control provider over the REST API."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

import httpx

from .config import Settings
from .errors import ConfigurationError
from .interfaces import SourceControlProvider
from .plan import RepositoryDetails, RepositoryVisibility, ScmPlatform

logger = logging.getLogger(__name__)

GITHUB_API_VERSION = "2022-11-28"


class ScmApiError(RuntimeError):
    """Raised when the platform API returns an error."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GitHubProvider(SourceControlProvider):
    """Async client for repository creation and Actions runs."""

    platform = ScmPlatform.GITHUB

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        timeout_seconds: float = 30.0,
        run_start_delay: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.owner = settings.github_owner
        self.run_start_delay = run_start_delay
        self.sleep = sleep
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": GITHUB_API_VERSION,
        }
        if settings.github_token:
            headers["Authorization"] = f"Bearer {settings.github_token}"
        self._client = client or httpx.AsyncClient(
            base_url=settings.github_api_base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubProvider:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: Any | None = None,
    ) -> httpx.Response:
        try:
            resp = await self._client.request(method, path, params=params, json=body)
            resp.raise_for_status()
            return resp
        except httpx.RequestError as e:
            raise ScmApiError(f"GitHub request failed ({method} {path}): {e}") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise ScmApiError(
                f"GitHub API error {status} ({method} {path}): {e.response.text}",
                status_code=status,
            ) from e

    async def _is_organization(self) -> bool:
        try:
            await self._request("GET", f"/orgs/{self.owner}")
        except ScmApiError as e:
            if e.status_code == 404:
                return False
            raise
        return True

    async def create_repository(
        self,
        name: str,
        description: str | None,
        visibility: RepositoryVisibility,
    ) -> RepositoryDetails:
        if not self.owner:
            raise ConfigurationError("GitHub owner is not configured (CRISP_GITHUB_OWNER)")
        logger.info("Creating GitHub repository: %s/%s", self.owner, name)
        body: dict[str, Any] = {
            "name": name,
            "description": description or "",
            "private": visibility != RepositoryVisibility.PUBLIC,
            "auto_init": False,
            "has_issues": True,
            "has_projects": True,
            "has_wiki": False,
        }

        if await self._is_organization():
            if visibility == RepositoryVisibility.INTERNAL:
                body["visibility"] = "internal"
            resp = await self._request("POST", f"/orgs/{self.owner}/repos", body=body)
        else:
            resp = await self._request("POST", "/user/repos", body=body)

        repo = resp.json()
        logger.info("Repository created: %s", repo.get("html_url"))
        return RepositoryDetails(
            name=repo.get("name", name),
            owner=self.owner,
            visibility=visibility.value,
            default_branch=repo.get("default_branch") or "main",
            url=repo.get("html_url"),
            clone_url=repo.get("clone_url"),
        )

    async def trigger_pipeline(
        self, repository_name: str, pipeline_id: str | None, branch_name: str
    ) -> tuple[str, str]:
        """Actions start on push; find the run that push started."""
        logger.info(
            "Looking up workflow run in %s/%s on branch %s", self.owner, repository_name, branch_name
        )
        if pipeline_id:
            await self._request(
                "POST",
                f"/repos/{self.owner}/{repository_name}/actions/workflows/{pipeline_id}/dispatches",
                body={"ref": branch_name},
            )
        if self.run_start_delay:
            await self.sleep(self.run_start_delay)

        resp = await self._request(
            "GET",
            f"/repos/{self.owner}/{repository_name}/actions/runs",
            params={"branch": branch_name, "per_page": 1},
        )
        runs = resp.json().get("workflow_runs") or []
        if runs:
            latest = runs[0]
            logger.info("Found workflow run: %s", latest.get("id"))
            return latest.get("html_url", ""), str(latest.get("id"))

        return f"https://github.com/{self.owner}/{repository_name}/actions", "pending"

    async def get_pipeline_status(
        self, repository_name: str, run_id: str
    ) -> tuple[str, str | None]:
        if not run_id or not run_id.isdigit():
            return "unknown", None
        resp = await self._request(
            "GET", f"/repos/{self.owner}/{repository_name}/actions/runs/{run_id}"
        )
        run = resp.json()
        return run.get("status") or "unknown", run.get("conclusion")

    async def validate_connection(self) -> bool:
        try:
            await self._request("GET", "/user")
            return True
        except ScmApiError as e:
            logger.error("Failed to validate GitHub connection: %s", e)
            return False
