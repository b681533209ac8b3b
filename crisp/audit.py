"""In-memory audit trail with JSON and CSV export."""

from __future__ import annotations

import csv
import io
import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from .interfaces import AuditLogger
from .plan import ActionResult, ExecutionPhase

logger = logging.getLogger(__name__)

CSV_COLUMNS = (
    "id",
    "timestamp",
    "session_id",
    "agent_id",
    "action",
    "phase",
    "result",
    "detail",
    "duration_ms",
)


@dataclass(frozen=True)
class AuditLogEntry:
    session_id: str
    action: str
    phase: ExecutionPhase
    result: ActionResult
    detail: str
    parameters: dict[str, Any] = field(default_factory=dict, hash=False)
    agent_id: str | None = None
    duration_ms: int | None = None
    id: UUID = field(default_factory=uuid4)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": self.timestamp.isoformat(),
            "session_id": self.session_id,
            "agent_id": self.agent_id,
            "action": self.action,
            "phase": self.phase.value,
            "result": self.result.value,
            "detail": self.detail,
            "parameters": self.parameters,
            "duration_ms": self.duration_ms,
        }


class InMemoryAuditLogger(AuditLogger):
    """Per-session audit entries kept in memory and mirrored to the log."""

    def __init__(self, session_id: str | None = None, agent_id: str | None = None):
        self.session_id = session_id or uuid4().hex[:12]
        self.agent_id = agent_id
        self._lock = threading.Lock()
        self._entries: dict[str, list[AuditLogEntry]] = {self.session_id: []}

    async def log(self, entry: AuditLogEntry) -> None:
        with self._lock:
            self._entries.setdefault(entry.session_id, []).append(entry)
        logger.info(
            "Audit: %s | phase=%s | result=%s | %s",
            entry.action,
            entry.phase.value,
            entry.result.value,
            entry.detail,
        )

    async def log_action(
        self,
        action: str,
        phase: ExecutionPhase,
        result: ActionResult,
        detail: str,
        parameters: Mapping[str, Any] | None = None,
    ) -> None:
        await self.log(
            AuditLogEntry(
                session_id=self.session_id,
                agent_id=self.agent_id,
                action=action,
                phase=phase,
                result=result,
                detail=detail,
                parameters=dict(parameters or {}),
            )
        )

    def entries(self, session_id: str | None = None) -> list[AuditLogEntry]:
        with self._lock:
            return list(self._entries.get(session_id or self.session_id, []))

    def export(self, fmt: str = "json", session_id: str | None = None) -> str:
        entries = self.entries(session_id)
        fmt = fmt.lower()
        if fmt == "json":
            return json.dumps([entry.to_dict() for entry in entries], indent=2, default=str)
        if fmt == "csv":
            return _to_csv(entries)
        raise ValueError(f"Unsupported export format: {fmt}")


def _to_csv(entries: list[AuditLogEntry]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_COLUMNS)
    for entry in entries:
        row = entry.to_dict()
        writer.writerow(
            [row[column] if row[column] is not None else "" for column in CSV_COLUMNS]
        )
    return buffer.getvalue()
