"""Git operations through the ``git`` command line."""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote, urlsplit, urlunsplit

from .interfaces import GitCredentials, GitOperations

logger = logging.getLogger(__name__)


class GitError(RuntimeError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        super().__init__(f"git {' '.join(args)} failed ({returncode}): {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


def authenticated_url(remote_url: str, credentials: GitCredentials) -> str:
    """Embed credentials into an https remote URL."""
    parts = urlsplit(remote_url)
    if parts.scheme not in ("http", "https") or not credentials.password:
        return remote_url
    userinfo = f"{quote(credentials.username, safe='')}:{quote(credentials.password, safe='')}"
    host = parts.hostname or ""
    if parts.port:
        host = f"{host}:{parts.port}"
    return urlunsplit((parts.scheme, f"{userinfo}@{host}", parts.path, parts.query, parts.fragment))


class GitCli(GitOperations):
    def __init__(self, executable: str = "git", timeout_seconds: float = 120.0):
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    async def _run(self, path: str, *args: str, redact: str | None = None) -> str:
        shown = [arg.replace(redact, "***") if redact else arg for arg in args]
        logger.debug("git %s (in %s)", " ".join(shown), path)

        proc = await asyncio.create_subprocess_exec(
            self.executable,
            *args,
            cwd=path,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout_seconds)
        except (asyncio.CancelledError, TimeoutError):
            proc.kill()
            await proc.wait()
            raise

        err = stderr.decode(errors="replace")
        if redact:
            err = err.replace(redact, "***")
        if proc.returncode != 0:
            raise GitError(shown, proc.returncode or -1, err)
        return stdout.decode(errors="replace").strip()

    async def initialize_repository(self, path: str, default_branch: str = "main") -> None:
        await self._run(path, "init", "--initial-branch", default_branch)

    async def stage_all(self, path: str) -> None:
        await self._run(path, "add", "--all")

    async def commit(self, path: str, message: str, author_name: str, author_email: str) -> str:
        await self._run(
            path,
            "-c",
            f"user.name={author_name}",
            "-c",
            f"user.email={author_email}",
            "commit",
            "--message",
            message,
        )
        return await self._run(path, "rev-parse", "HEAD")

    async def add_remote(self, path: str, remote_name: str, remote_url: str) -> None:
        await self._run(path, "remote", "add", remote_name, remote_url)

    async def push(
        self, path: str, remote_name: str, branch_name: str, credentials: GitCredentials
    ) -> None:
        remote_url = await self._run(path, "remote", "get-url", remote_name)
        target = authenticated_url(remote_url, credentials)
        secret = quote(credentials.password, safe="") if credentials.password else None
        refspec = f"refs/heads/{branch_name}:refs/heads/{branch_name}"
        await self._run(path, "push", target, refspec, redact=secret)
