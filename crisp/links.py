"""VS Code entry points for a delivered repository."""

from __future__ import annotations

from urllib.parse import quote, urlparse

from .plan import ScmPlatform

VSCODE_WEB_GITHUB = "https://vscode.dev/github/"
VSCODE_CLONE_PREFIX = "vscode://vscode.git/clone?url="

_AZURE_HOST_MARKERS = ("dev.azure.com", "visualstudio.com")


def _is_github_url(repository_url: str) -> bool:
    host = (urlparse(repository_url).hostname or "").lower()
    return host == "github.com" or host.endswith(".github.com")


def _is_azure_devops_url(repository_url: str) -> bool:
    lowered = repository_url.lower()
    return any(marker in lowered for marker in _AZURE_HOST_MARKERS) or "/_git/" in lowered


def vscode_web_url(repository_url: str, platform: ScmPlatform | None = None) -> str:
    """Browser link: vscode.dev for GitHub, the web editor for Azure DevOps, else the URL itself."""
    if not repository_url:
        return ""

    if _is_github_url(repository_url) or (
        platform == ScmPlatform.GITHUB and not _is_azure_devops_url(repository_url)
    ):
        path = urlparse(repository_url).path.strip("/")
        if path.endswith(".git"):
            path = path[: -len(".git")]
        return f"{VSCODE_WEB_GITHUB}{path}"

    if platform == ScmPlatform.AZURE_DEVOPS or _is_azure_devops_url(repository_url):
        separator = "&" if urlparse(repository_url).query else "?"
        return f"{repository_url}{separator}path=/&_a=contents"

    return repository_url


def vscode_clone_url(clone_url: str) -> str:
    """Desktop link: the percent-encoded clone URL behind the vscode:// git clone handler."""
    if not clone_url:
        return ""
    return f"{VSCODE_CLONE_PREFIX}{quote(clone_url, safe='')}"
