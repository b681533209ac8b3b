"""
Conversational session state.

A CrispSession carries one user's conversation from intake through delivery.
All mutations go through methods that hold the session lock; change listeners
(the registry's dirty tracking) are notified after the lock is released.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from .config import Settings
from .errors import UsageError
from .events import EventStream
from .plan import DeliveryResult, ExecutionPlan

logger = logging.getLogger(__name__)


class SessionStatus(StrEnum):
    INTAKE = "intake"
    PLANNING = "planning"
    AWAITING_APPROVAL = "awaiting_approval"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SessionStatus.COMPLETED, SessionStatus.FAILED)


ALLOWED_TRANSITIONS: dict[SessionStatus, frozenset[SessionStatus]] = {
    SessionStatus.INTAKE: frozenset({SessionStatus.PLANNING, SessionStatus.FAILED}),
    SessionStatus.PLANNING: frozenset(
        {SessionStatus.AWAITING_APPROVAL, SessionStatus.INTAKE, SessionStatus.FAILED}
    ),
    SessionStatus.AWAITING_APPROVAL: frozenset({SessionStatus.EXECUTING, SessionStatus.PLANNING}),
    SessionStatus.EXECUTING: frozenset({SessionStatus.COMPLETED, SessionStatus.FAILED}),
    SessionStatus.COMPLETED: frozenset(),
    SessionStatus.FAILED: frozenset(),
}


class MessageRole(StrEnum):
    USER = "user"
    ASSISTANT = "assistant"


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str
    message_id: str = field(default_factory=lambda: uuid4().hex)
    timestamp: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "role": self.role.value,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": dict(self.metadata),
        }


SessionListener = Callable[["CrispSession"], None]


class CrispSession:
    """One conversation, its pending plan and its delivery outcome."""

    def __init__(
        self,
        session_id: str,
        owner_id: str,
        *,
        configuration: Settings | None = None,
        project_name: str | None = None,
        status: SessionStatus = SessionStatus.INTAKE,
        created_at: datetime | None = None,
        last_activity_at: datetime | None = None,
        messages: list[ChatMessage] | None = None,
        delivery_result: DeliveryResult | None = None,
        backlog_limit: int = 1000,
    ):
        self.session_id = session_id
        self.owner_id = owner_id
        self.configuration = configuration
        self.created_at = created_at or _utcnow()
        self.events = EventStream(session_id, backlog_limit=backlog_limit)

        self._lock = threading.RLock()
        self._status = status
        self._project_name = project_name
        self._last_activity_at = last_activity_at or self.created_at
        self._messages: list[ChatMessage] = list(messages or [])
        self._plan: ExecutionPlan | None = None
        self._delivery_result = delivery_result
        self._listeners: list[SessionListener] = []

    def __repr__(self) -> str:
        return f"<CrispSession {self.session_id} owner={self.owner_id} status={self.status.value}>"

    # -- observation ------------------------------------------------------

    def on_change(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def _changed(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Session listener failed for %s", self.session_id)

    @property
    def status(self) -> SessionStatus:
        with self._lock:
            return self._status

    @property
    def project_name(self) -> str | None:
        with self._lock:
            return self._project_name

    @project_name.setter
    def project_name(self, value: str | None) -> None:
        with self._lock:
            self._project_name = value
        self._changed()

    @property
    def last_activity_at(self) -> datetime:
        with self._lock:
            return self._last_activity_at

    @property
    def messages(self) -> list[ChatMessage]:
        with self._lock:
            return list(self._messages)

    @property
    def current_plan(self) -> ExecutionPlan | None:
        with self._lock:
            return self._plan

    @property
    def pending_plan(self) -> ExecutionPlan | None:
        with self._lock:
            if self._status == SessionStatus.AWAITING_APPROVAL:
                return self._plan
            return None

    @property
    def delivery_result(self) -> DeliveryResult | None:
        with self._lock:
            return self._delivery_result

    # -- mutation ---------------------------------------------------------

    def touch(self) -> None:
        with self._lock:
            self._last_activity_at = _utcnow()
        self._changed()

    def add_message(
        self,
        role: MessageRole,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> ChatMessage:
        message = ChatMessage(role=role, content=content, metadata=dict(metadata or {}))
        with self._lock:
            self._messages.append(message)
            self._last_activity_at = message.timestamp
        self._changed()
        return message

    def _transition_locked(self, new_status: SessionStatus) -> None:
        if new_status not in ALLOWED_TRANSITIONS[self._status]:
            raise UsageError(
                f"Session {self.session_id} cannot move from {self._status.value} to {new_status.value}"
            )
        logger.debug("Session %s: %s -> %s", self.session_id, self._status.value, new_status.value)
        self._status = new_status
        self._last_activity_at = _utcnow()

    def transition(self, new_status: SessionStatus) -> None:
        with self._lock:
            self._transition_locked(new_status)
        self._changed()

    def set_plan(self, plan: ExecutionPlan) -> None:
        """Attach a plan and wait for approval. Only one plan may be pending."""
        with self._lock:
            if self._status == SessionStatus.AWAITING_APPROVAL:
                raise UsageError(f"Session {self.session_id} already has a plan awaiting approval")
            self._transition_locked(SessionStatus.AWAITING_APPROVAL)
            self._plan = plan
            self._project_name = plan.requirements.project_name
        self._changed()

    def approve_plan(self) -> ExecutionPlan:
        with self._lock:
            if self._status != SessionStatus.AWAITING_APPROVAL or self._plan is None:
                raise UsageError(f"Session {self.session_id} has no plan awaiting approval")
            plan = self._plan
            plan.approve()
            self._transition_locked(SessionStatus.EXECUTING)
        self._changed()
        return plan

    def reject_plan(self) -> ExecutionPlan:
        with self._lock:
            if self._status != SessionStatus.AWAITING_APPROVAL or self._plan is None:
                raise UsageError(f"Session {self.session_id} has no plan awaiting approval")
            plan = self._plan
            self._plan = None
            self._transition_locked(SessionStatus.PLANNING)
        self._changed()
        return plan

    def complete(self, result: DeliveryResult) -> None:
        with self._lock:
            self._transition_locked(
                SessionStatus.COMPLETED if result.success else SessionStatus.FAILED
            )
            self._delivery_result = result
        self._changed()

    def fail(self) -> None:
        with self._lock:
            if self._status.is_terminal:
                return
            self._transition_locked(SessionStatus.FAILED)
        self._changed()

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "session_id": self.session_id,
                "owner_id": self.owner_id,
                "project_name": self._project_name,
                "status": self._status.value,
                "created_at": self.created_at.isoformat(),
                "last_activity_at": self._last_activity_at.isoformat(),
                "message_count": len(self._messages),
                "plan": self._plan.to_dict() if self._plan else None,
                "delivery_result": self._delivery_result.to_dict() if self._delivery_result else None,
            }
