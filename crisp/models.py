"""SQLAlchemy models for the session store."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

CURRENT_SCHEMA_VERSION = 2

JSONDocument = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONDocument,
        list[dict[str, Any]]: JSONDocument,
    }


class SessionRecord(Base):
    """One durable row per chat session, messages and delivery result inline."""

    __tablename__ = "crisp_sessions"

    session_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    owner_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    project_name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="intake")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    messages: Mapped[list[dict[str, Any]]] = mapped_column(nullable=False, default=list)
    delivery_result: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    schema_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=CURRENT_SCHEMA_VERSION
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
