"""
CRISP scaffolding engine

Turns a structured project request into an approved execution plan, then
scaffolds, pushes and verifies a new repository on GitHub or Azure DevOps.
"""

__version__ = "0.1.0"

# Configuration
from crisp.config import Settings

# Errors
from crisp.errors import (
    CleanupError,
    ConfigurationError,
    CrispError,
    PersistenceError,
    PlanningError,
    StepExecutionError,
    UsageError,
)

# Events
from crisp.events import AgentEvent, EventKind, EventStream

# Orchestration
from crisp.orchestrator import Orchestrator

# Plan model
from crisp.plan import (
    DeliveryResult,
    ExecutionPlan,
    ExecutionStep,
    ProjectFramework,
    ProjectLanguage,
    ProjectRequirements,
    RepositoryVisibility,
    ScmPlatform,
)

# Sessions
from crisp.session import ChatMessage, CrispSession, SessionStatus

__all__ = [
    # Version
    "__version__",
    # Config
    "Settings",
    # Errors
    "CrispError",
    "ConfigurationError",
    "PlanningError",
    "StepExecutionError",
    "CleanupError",
    "UsageError",
    "PersistenceError",
    # Events
    "AgentEvent",
    "EventKind",
    "EventStream",
    # Orchestration
    "Orchestrator",
    # Plan
    "DeliveryResult",
    "ExecutionPlan",
    "ExecutionStep",
    "ProjectFramework",
    "ProjectLanguage",
    "ProjectRequirements",
    "RepositoryVisibility",
    "ScmPlatform",
    # Sessions
    "ChatMessage",
    "CrispSession",
    "SessionStatus",
]
