import pytest

from crisp.errors import UsageError
from crisp.plan import (
    OP_CREATE_REPOSITORY,
    OP_INIT_COMMIT,
    OP_PUSH,
    OP_SCAFFOLD,
    OP_TEMPLATE_SELECT,
    OP_TRIGGER_PIPELINE,
    OP_VERIFY_PIPELINE,
    DeliveryResult,
    ExecutionPlan,
    PipelineDefinition,
    PlannedFile,
    RepositoryDetails,
    ScmPlatform,
    TemplateSelection,
    build_execution_steps,
    build_plan_summary,
)
from tests.conftest import make_requirements


def _plan(pipeline: PipelineDefinition | None = None) -> ExecutionPlan:
    requirements = make_requirements()
    template = TemplateSelection("python-fastapi", "FastAPI service", "1.0.0")
    files = (PlannedFile("README.md"), PlannedFile(".gitignore"))
    repository = RepositoryDetails("widgets", "acme", "private", "main")
    return ExecutionPlan(
        requirements=requirements,
        template=template,
        planned_files=files,
        repository=repository,
        pipeline=pipeline,
        policy_results=(),
        steps=build_execution_steps(requirements, template, files, repository, pipeline),
        summary=build_plan_summary(requirements, template, files, repository, pipeline),
    )


_PIPELINE = PipelineDefinition("ci.yml", ".github/workflows/ci.yml", "push", ("build", "test"))


def test_steps_without_pipeline_are_five_contiguous() -> None:
    plan = _plan()

    assert [step.step_number for step in plan.steps] == [1, 2, 3, 4, 5]
    assert [step.operation for step in plan.steps] == [
        OP_TEMPLATE_SELECT,
        OP_SCAFFOLD,
        OP_CREATE_REPOSITORY,
        OP_INIT_COMMIT,
        OP_PUSH,
    ]
    assert not plan.has_step(OP_VERIFY_PIPELINE)


def test_steps_with_pipeline_add_trigger_and_verify() -> None:
    plan = _plan(_PIPELINE)

    assert [step.step_number for step in plan.steps] == list(range(1, 8))
    assert plan.steps[5].operation == OP_TRIGGER_PIPELINE
    assert plan.steps[6].operation == OP_VERIFY_PIPELINE
    assert "ci.yml" in plan.summary
    assert "build -> test" in plan.summary


def test_steps_start_pending() -> None:
    plan = _plan()

    assert all(step.status == "pending" for step in plan.steps)
    assert plan.is_approved is False


def test_approve_only_once() -> None:
    plan = _plan()
    plan.approve()

    assert plan.is_approved
    with pytest.raises(UsageError):
        plan.approve()


def test_step_lookup_by_operation() -> None:
    plan = _plan()

    assert plan.step(OP_PUSH).step_number == 5
    with pytest.raises(KeyError):
        plan.step(OP_TRIGGER_PIPELINE)


def test_plan_to_dict_includes_steps() -> None:
    data = _plan(_PIPELINE).to_dict()

    assert data["project_name"] == "widgets"
    assert len(data["steps"]) == 7
    assert data["steps"][0]["status"] == "pending"


def test_successful_delivery_requires_urls() -> None:
    with pytest.raises(ValueError):
        DeliveryResult(success=True, platform="GitHub", default_branch="main")


def test_failed_delivery_requires_message() -> None:
    with pytest.raises(ValueError):
        DeliveryResult(success=False, platform="GitHub", default_branch="main")

    result = DeliveryResult.failed("GitHub", "main", "")
    assert result.error_message == "Unknown error"


def test_succeeded_derives_both_vscode_links() -> None:
    result = DeliveryResult.succeeded(
        ScmPlatform.GITHUB,
        "main",
        "https://github.com/acme/widgets",
        "https://github.com/acme/widgets.git",
    )

    assert result.platform == "GitHub"
    assert result.vscode_web_url == "https://vscode.dev/github/acme/widgets"
    assert result.vscode_clone_url.startswith("vscode://vscode.git/clone?url=")
    assert result.delivery_card()["build_status"] == "N/A"
