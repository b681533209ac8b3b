"""
Rule-based policy gate.

Results are advisory: plan creation records them and surfaces them to the
approver but never rejects a plan because of them.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .interfaces import PolicyEngine
from .plan import ExecutionPlan, PolicyValidationResult, ProjectRequirements

logger = logging.getLogger(__name__)

KEBAB_CASE_RE = re.compile(r"^[a-z][a-z0-9-]*$")
PIPELINE_FILE_MARKERS = ("ci.yml", "azure-pipelines.yml")


@dataclass(frozen=True)
class PolicyDefinition:
    id: str
    name: str
    description: str = ""
    severity: str = "error"
    category: str = "general"
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PolicyDefinition:
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            description=str(data.get("description") or ""),
            severity=str(data.get("severity") or "error").lower(),
            category=str(data.get("category") or "general"),
            enabled=bool(data.get("enabled", True)),
        )


DEFAULT_POLICIES: tuple[PolicyDefinition, ...] = (
    PolicyDefinition(
        id="naming-convention",
        name="Project Naming Convention",
        description="Project names must use kebab-case (lowercase with hyphens)",
        severity="error",
        category="naming",
    ),
    PolicyDefinition(
        id="no-secrets-in-code",
        name="No Secrets in Code",
        description="Repository must not contain secrets or credentials in code",
        severity="error",
        category="security",
    ),
    PolicyDefinition(
        id="require-gitignore",
        name="Require .gitignore",
        description="Repository must include a .gitignore file",
        severity="error",
        category="structure",
    ),
    PolicyDefinition(
        id="require-readme",
        name="Require README",
        description="Repository must include a README.md file",
        severity="warning",
        category="documentation",
    ),
    PolicyDefinition(
        id="require-ci-pipeline",
        name="Require CI Pipeline",
        description="Repository must include a CI/CD pipeline configuration",
        severity="warning",
        category="ci-cd",
    ),
)


def _result(policy: PolicyDefinition, passed: bool, message: str) -> PolicyValidationResult:
    return PolicyValidationResult(
        policy_id=policy.id,
        policy_name=policy.name,
        passed=passed,
        message=message,
        severity=policy.severity,
    )


def check_naming_convention(
    policy: PolicyDefinition, requirements: ProjectRequirements, plan: ExecutionPlan
) -> PolicyValidationResult:
    name = requirements.project_name
    if KEBAB_CASE_RE.match(name):
        return _result(policy, True, "Project name follows kebab-case convention")
    return _result(policy, False, f"Project name '{name}' does not follow kebab-case convention")


def _planned_file_check(file_name: str) -> Callable[..., PolicyValidationResult]:
    def check(
        policy: PolicyDefinition, requirements: ProjectRequirements, plan: ExecutionPlan
    ) -> PolicyValidationResult:
        exists = any(
            planned.relative_path.lower() == file_name.lower() for planned in plan.planned_files
        )
        if exists:
            return _result(policy, True, f"{file_name} will be created")
        return _result(policy, False, f"{file_name} is required but not in the plan")

    return check


def check_ci_pipeline(
    policy: PolicyDefinition, requirements: ProjectRequirements, plan: ExecutionPlan
) -> PolicyValidationResult:
    has_pipeline = plan.pipeline is not None or any(
        marker in planned.relative_path.lower()
        for planned in plan.planned_files
        for marker in PIPELINE_FILE_MARKERS
    )
    if has_pipeline:
        return _result(policy, True, "CI/CD pipeline will be created")
    return _result(policy, False, "No CI/CD pipeline in the plan")


def check_no_secrets(
    policy: PolicyDefinition, requirements: ProjectRequirements, plan: ExecutionPlan
) -> PolicyValidationResult:
    # Generated content is not available at plan time; custom configuration is.
    suspicious = [
        key
        for key in requirements.custom_configuration
        if any(word in key.lower() for word in ("password", "secret", "token", "apikey", "api_key"))
    ]
    if suspicious:
        return _result(
            policy, False, f"Custom configuration looks like it holds secrets: {', '.join(suspicious)}"
        )
    return _result(policy, True, "No secrets detected in planned files")


RuleCheck = Callable[[PolicyDefinition, ProjectRequirements, ExecutionPlan], PolicyValidationResult]

RULE_CHECKS: dict[str, RuleCheck] = {
    "naming-convention": check_naming_convention,
    "no-secrets-in-code": check_no_secrets,
    "require-gitignore": _planned_file_check(".gitignore"),
    "require-readme": _planned_file_check("README.md"),
    "require-ci-pipeline": check_ci_pipeline,
}


def all_policies_passed(results: list[PolicyValidationResult]) -> bool:
    """True when every result passed or only carries a warning."""
    return all(result.passed or result.severity == "warning" for result in results)


class RulePolicyEngine(PolicyEngine):
    """Evaluates enabled policy definitions against a draft plan."""

    def __init__(self, policies: list[PolicyDefinition] | None = None):
        self.policies: list[PolicyDefinition] = list(
            DEFAULT_POLICIES if policies is None else policies
        )

    def load_policies(self, path: str | Path) -> list[PolicyDefinition]:
        """Replace the rule set with definitions from a YAML or JSON file."""
        path = Path(path)
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() in (".yaml", ".yml"):
            raw = yaml.safe_load(text) or []
        else:
            raw = json.loads(text)
        if isinstance(raw, dict):
            raw = raw.get("policies", [])
        if not isinstance(raw, list):
            raise ValueError(f"{path}: expected a list of policy definitions")

        self.policies = [PolicyDefinition.from_dict(item) for item in raw]
        logger.info("Loaded %d policies from %s", len(self.policies), path)
        return self.policies

    async def validate_plan(
        self, requirements: ProjectRequirements, plan: ExecutionPlan
    ) -> list[PolicyValidationResult]:
        enabled = [policy for policy in self.policies if policy.enabled]
        logger.info("Validating plan %s against %d policies", plan.id, len(enabled))

        results: list[PolicyValidationResult] = []
        for policy in enabled:
            check = RULE_CHECKS.get(policy.id)
            if check is None:
                results.append(
                    PolicyValidationResult(
                        policy_id=policy.id,
                        policy_name=policy.name,
                        passed=True,
                        message="Policy not implemented, skipped",
                        severity="info",
                    )
                )
                continue
            results.append(check(policy, requirements, plan))
        return results
