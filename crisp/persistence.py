"""
Durable session records and their schema migration.

Delivery results written by older releases carry a single ``vscode_link``
field. Records are migrated on load so that both ``vscode_web_url`` and
``vscode_clone_url`` are always populated; migrating an already migrated
record returns it unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from . import db
from .errors import PersistenceError
from .links import vscode_clone_url, vscode_web_url
from .models import CURRENT_SCHEMA_VERSION, SessionRecord
from .plan import DeliveryResult, ScmPlatform
from .session import ChatMessage, CrispSession, MessageRole, SessionStatus

logger = logging.getLogger(__name__)

LEGACY_LINK_FIELD = "vscode_link"


def _as_utc(value: datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _platform_from_label(label: str | None) -> ScmPlatform | None:
    lowered = (label or "").lower()
    if "azure" in lowered:
        return ScmPlatform.AZURE_DEVOPS
    if "github" in lowered:
        return ScmPlatform.GITHUB
    return None


def migrate_delivery_record(record: dict[str, Any]) -> dict[str, Any]:
    """Populate both VS Code links from a legacy link or from the repository URLs."""
    migrated = dict(record)
    legacy = migrated.pop(LEGACY_LINK_FIELD, None) or ""
    web = migrated.get("vscode_web_url") or ""
    clone = migrated.get("vscode_clone_url") or ""

    if legacy.startswith("vscode://"):
        clone = clone or legacy
    elif legacy.startswith(("http://", "https://")):
        web = web or legacy

    repository_url = migrated.get("repository_url") or ""
    if not web and repository_url:
        web = vscode_web_url(repository_url, _platform_from_label(migrated.get("platform")))
    if not clone and migrated.get("clone_url"):
        clone = vscode_clone_url(migrated["clone_url"])

    migrated["vscode_web_url"] = web
    migrated["vscode_clone_url"] = clone
    return migrated


def needs_migration(record: dict[str, Any]) -> bool:
    return LEGACY_LINK_FIELD in record or migrate_delivery_record(record) != record


@dataclass
class PersistedMessage:
    message_id: str
    role: str
    content: str
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersistedMessage:
        return cls(
            message_id=data["message_id"],
            role=data["role"],
            content=data["content"],
            timestamp=_as_utc(data["timestamp"]),
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "message_id": self.message_id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class PersistedDeliveryResult:
    success: bool
    platform: str
    default_branch: str
    repository_url: str = ""
    clone_url: str = ""
    pipeline_url: str | None = None
    build_status: str | None = None
    vscode_web_url: str = ""
    vscode_clone_url: str = ""
    collection_url: str | None = None
    project_name: str | None = None
    summary_card: str = ""
    error_message: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PersistedDeliveryResult:
        data = migrate_delivery_record(data)
        return cls(
            success=bool(data["success"]),
            platform=data.get("platform") or "",
            default_branch=data.get("default_branch") or "main",
            repository_url=data.get("repository_url") or "",
            clone_url=data.get("clone_url") or "",
            pipeline_url=data.get("pipeline_url"),
            build_status=data.get("build_status"),
            vscode_web_url=data["vscode_web_url"],
            vscode_clone_url=data["vscode_clone_url"],
            collection_url=data.get("collection_url"),
            project_name=data.get("project_name"),
            summary_card=data.get("summary_card") or "",
            error_message=data.get("error_message"),
        )

    @classmethod
    def from_result(cls, result: DeliveryResult) -> PersistedDeliveryResult:
        return cls(**result.to_dict())

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "platform": self.platform,
            "default_branch": self.default_branch,
            "repository_url": self.repository_url,
            "clone_url": self.clone_url,
            "pipeline_url": self.pipeline_url,
            "build_status": self.build_status,
            "vscode_web_url": self.vscode_web_url,
            "vscode_clone_url": self.vscode_clone_url,
            "collection_url": self.collection_url,
            "project_name": self.project_name,
            "summary_card": self.summary_card,
            "error_message": self.error_message,
        }

    def to_result(self) -> DeliveryResult:
        return DeliveryResult(**self.to_dict())


@dataclass
class PersistedSession:
    session_id: str
    owner_id: str
    created_at: datetime
    last_activity_at: datetime
    status: str
    project_name: str | None = None
    messages: list[PersistedMessage] = field(default_factory=list)
    delivery_result: PersistedDeliveryResult | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    @classmethod
    def from_record(cls, record: SessionRecord) -> PersistedSession:
        try:
            SessionStatus(record.status)
            persisted = cls(
                session_id=record.session_id,
                owner_id=record.owner_id,
                project_name=record.project_name,
                created_at=_as_utc(record.created_at),
                last_activity_at=_as_utc(record.last_activity_at),
                status=record.status,
                messages=[PersistedMessage.from_dict(item) for item in record.messages or []],
                delivery_result=(
                    PersistedDeliveryResult.from_dict(record.delivery_result)
                    if record.delivery_result
                    else None
                ),
                schema_version=CURRENT_SCHEMA_VERSION,
            )
            if persisted.delivery_result is not None:
                persisted.delivery_result.to_result()
            return persisted
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise PersistenceError(record.session_id, f"Corrupt session record: {exc}") from exc

    def apply_to(self, record: SessionRecord) -> SessionRecord:
        record.owner_id = self.owner_id
        record.project_name = self.project_name
        record.created_at = self.created_at
        record.last_activity_at = self.last_activity_at
        record.status = self.status
        record.messages = [message.to_dict() for message in self.messages]
        record.delivery_result = self.delivery_result.to_dict() if self.delivery_result else None
        record.schema_version = self.schema_version
        return record


def snapshot(session: CrispSession) -> PersistedSession:
    """Durable projection of a live session."""
    result = session.delivery_result
    return PersistedSession(
        session_id=session.session_id,
        owner_id=session.owner_id,
        project_name=session.project_name,
        created_at=session.created_at,
        last_activity_at=session.last_activity_at,
        status=session.status.value,
        messages=[
            PersistedMessage(
                message_id=message.message_id,
                role=message.role.value,
                content=message.content,
                timestamp=message.timestamp,
                metadata=dict(message.metadata),
            )
            for message in session.messages
        ],
        delivery_result=PersistedDeliveryResult.from_result(result) if result else None,
    )


INTERRUPTED_EXECUTION_MESSAGE = (
    "Execution was interrupted by a service restart. Remote changes made before the "
    "interruption were not rolled back; start a new session to try again."
)
LOST_PLAN_MESSAGE = (
    "The plan awaiting your approval was lost when the service restarted. "
    "Send your request again and I'll prepare a new plan."
)


def restore(persisted: PersistedSession, backlog_limit: int = 1000) -> CrispSession:
    """Rebuild a live session. Pending plans are not persisted and do not come back.

    Sessions caught mid-flight cannot resume: ``executing`` becomes ``failed``,
    ``planning`` and ``awaiting_approval`` go back to ``intake``.
    """
    status = SessionStatus(persisted.status)
    messages = [
        ChatMessage(
            role=MessageRole(message.role),
            content=message.content,
            message_id=message.message_id,
            timestamp=message.timestamp,
            metadata=dict(message.metadata),
        )
        for message in persisted.messages
    ]

    notice = None
    if status == SessionStatus.EXECUTING:
        status, notice = SessionStatus.FAILED, INTERRUPTED_EXECUTION_MESSAGE
    elif status == SessionStatus.AWAITING_APPROVAL:
        status, notice = SessionStatus.INTAKE, LOST_PLAN_MESSAGE
    elif status == SessionStatus.PLANNING:
        status = SessionStatus.INTAKE
    if status.value != persisted.status:
        logger.info(
            "Session %s restored as %s (was %s)", persisted.session_id, status.value, persisted.status
        )
    if notice is not None:
        messages.append(ChatMessage(role=MessageRole.ASSISTANT, content=notice))

    return CrispSession(
        persisted.session_id,
        persisted.owner_id,
        project_name=persisted.project_name,
        status=status,
        created_at=persisted.created_at,
        last_activity_at=persisted.last_activity_at,
        messages=messages,
        delivery_result=persisted.delivery_result.to_result() if persisted.delivery_result else None,
        backlog_limit=backlog_limit,
    )


class SessionStore:
    """SQLAlchemy-backed store of PersistedSession rows."""

    def __init__(self, engine: AsyncEngine | None = None):
        self.engine = engine or db.engine
        self._factory: async_sessionmaker[AsyncSession] = (
            async_sessionmaker(engine, expire_on_commit=False)
            if engine is not None
            else db.async_session_factory
        )

    async def create_all(self) -> None:
        await db.init_db(self.engine)

    async def save(self, persisted: PersistedSession) -> None:
        async with db.get_session(self._factory) as session:
            record = await session.get(SessionRecord, persisted.session_id)
            if record is None:
                record = SessionRecord(session_id=persisted.session_id)
                session.add(record)
            persisted.apply_to(record)

    async def save_many(self, items: Iterable[PersistedSession]) -> int:
        count = 0
        async with db.get_session(self._factory) as session:
            for persisted in items:
                record = await session.get(SessionRecord, persisted.session_id)
                if record is None:
                    record = SessionRecord(session_id=persisted.session_id)
                    session.add(record)
                persisted.apply_to(record)
                count += 1
        return count

    async def get(self, session_id: str) -> PersistedSession | None:
        async with db.get_session(self._factory) as session:
            record = await session.get(SessionRecord, session_id)
            if record is None:
                return None
            return PersistedSession.from_record(record)

    async def load_all(self, owner_id: str | None = None) -> list[PersistedSession]:
        """Every readable record, most recent activity first. Corrupt records are skipped."""
        async with db.get_session(self._factory) as session:
            query = select(SessionRecord).order_by(SessionRecord.last_activity_at.desc())
            if owner_id is not None:
                query = query.where(SessionRecord.owner_id == owner_id)
            records = (await session.execute(query)).scalars().all()

            loaded: list[PersistedSession] = []
            for record in records:
                try:
                    loaded.append(PersistedSession.from_record(record))
                except PersistenceError as exc:
                    logger.warning("Skipping session %s: %s", exc.session_id, exc)
            return loaded

    async def delete(self, session_id: str) -> bool:
        async with db.get_session(self._factory) as session:
            result = await session.execute(
                delete(SessionRecord).where(SessionRecord.session_id == session_id)
            )
            return bool(result.rowcount)

    async def migrate_all(self) -> int:
        """Rewrite records whose delivery result still uses the legacy link shape."""
        migrated = 0
        async with db.get_session(self._factory) as session:
            records = (await session.execute(select(SessionRecord))).scalars().all()
            for record in records:
                stale_version = record.schema_version != CURRENT_SCHEMA_VERSION
                stale_links = bool(record.delivery_result) and needs_migration(record.delivery_result)
                if not (stale_version or stale_links):
                    continue
                try:
                    PersistedSession.from_record(record).apply_to(record)
                except PersistenceError as exc:
                    logger.warning("Cannot migrate session %s: %s", exc.session_id, exc)
                    continue
                migrated += 1
        logger.info("Migrated %d session records", migrated)
        return migrated
