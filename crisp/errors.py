"""Error types and helpers for the scaffolding engine."""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import click

if TYPE_CHECKING:
    from .plan import ExecutionStep


class CrispError(Exception):
    """Base class for engine errors."""


class ConfigurationError(CrispError):
    """Missing or invalid platform configuration."""


class PlanningError(CrispError):
    """No generator matches the requested project."""


class StepExecutionError(CrispError):
    """A plan step's collaborator call failed."""

    def __init__(self, step: ExecutionStep, message: str) -> None:
        super().__init__(message)
        self.step = step


class CleanupError(CrispError):
    """Workspace cleanup failed. Logged, never surfaced."""


class UsageError(CrispError):
    """The caller violated the plan/session protocol."""


class PersistenceError(CrispError):
    """A single persisted session record could not be read."""

    def __init__(self, session_id: str | None, message: str) -> None:
        super().__init__(message)
        self.session_id = session_id


class SchemaNotInitializedError(click.ClickException):
    """Raised when the database schema/migrations have not been applied."""


_PG_MISSING_RELATION_RE = re.compile(r'relation "(?P<table>[^"]+)" does not exist', re.IGNORECASE)
_SQLITE_MISSING_TABLE_RE = re.compile(r"no such table:\s*(?P<table>[A-Za-z0-9_]+)", re.IGNORECASE)


def _exception_chain(exc: BaseException) -> list[BaseException]:
    chain: list[BaseException] = []
    current: BaseException | None = exc
    while current is not None and current not in chain:
        chain.append(current)
        current = current.__cause__ or current.__context__
    return chain


def missing_table_name(exc: BaseException) -> str | None:
    """Best-effort extraction of the missing table name from a DB exception."""
    for e in _exception_chain(exc):
        match = _PG_MISSING_RELATION_RE.search(str(e)) or _SQLITE_MISSING_TABLE_RE.search(str(e))
        if match:
            return match.group("table")
    return None


def is_schema_missing_error(exc: BaseException) -> bool:
    if missing_table_name(exc):
        return True
    return any("undefinedtableerror" in str(e).lower() for e in _exception_chain(exc))


def schema_not_initialized_message(exc: BaseException) -> str:
    table = missing_table_name(exc)
    table_hint = f" (missing table `{table}`)" if table else ""
    return "\n".join(
        [
            f"Session store schema is not initialized{table_hint}.",
            "Run: `alembic upgrade head`",
            "Or for a scratch database: `crisp init-db`",
        ]
    )
