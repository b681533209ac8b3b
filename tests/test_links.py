from crisp.links import vscode_clone_url, vscode_web_url
from crisp.plan import ScmPlatform


def test_github_web_link() -> None:
    assert vscode_web_url("https://github.com/acme/widgets") == "https://vscode.dev/github/acme/widgets"


def test_github_web_link_strips_suffixes() -> None:
    assert vscode_web_url("https://github.com/acme/widgets.git") == "https://vscode.dev/github/acme/widgets"
    assert vscode_web_url("https://github.com/acme/widgets/") == "https://vscode.dev/github/acme/widgets"


def test_github_clone_link_is_percent_encoded() -> None:
    assert (
        vscode_clone_url("https://github.com/acme/widgets.git")
        == "vscode://vscode.git/clone?url=https%3A%2F%2Fgithub.com%2Facme%2Fwidgets.git"
    )


def test_azure_devops_web_link_opens_contents() -> None:
    url = "https://dev.azure.com/acme/platform/_git/widgets"
    assert vscode_web_url(url) == f"{url}?path=/&_a=contents"


def test_on_prem_azure_devops_uses_platform_hint() -> None:
    url = "https://ado.example.com/tfs/DefaultCollection/platform/_git/widgets"
    assert vscode_web_url(url, ScmPlatform.AZURE_DEVOPS) == f"{url}?path=/&_a=contents"


def test_azure_devops_web_link_keeps_existing_query() -> None:
    url = "https://dev.azure.com/acme/platform/_git/widgets?version=GBmain"
    assert vscode_web_url(url) == f"{url}&path=/&_a=contents"


def test_github_enterprise_uses_platform_hint() -> None:
    assert (
        vscode_web_url("https://git.example.com/acme/widgets", ScmPlatform.GITHUB)
        == "https://vscode.dev/github/acme/widgets"
    )


def test_unknown_host_is_returned_unchanged() -> None:
    assert vscode_web_url("https://gitlab.com/acme/widgets") == "https://gitlab.com/acme/widgets"


def test_empty_inputs() -> None:
    assert vscode_web_url("") == ""
    assert vscode_clone_url("") == ""
