"""Session store table.

Revision ID: 0001_crisp_sessions
Revises: None
Create Date: 2026-02-02
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "0001_crisp_sessions"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

JSON_DOCUMENT = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    op.create_table(
        "crisp_sessions",
        sa.Column("session_id", sa.String(32), primary_key=True),
        sa.Column("owner_id", sa.String(), nullable=False),
        sa.Column("project_name", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="intake"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("messages", JSON_DOCUMENT, nullable=False),
        sa.Column("delivery_result", JSON_DOCUMENT, nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True
        ),
    )
    op.create_index("ix_crisp_sessions_owner_id", "crisp_sessions", ["owner_id"])
    op.create_index("ix_crisp_sessions_last_activity_at", "crisp_sessions", ["last_activity_at"])


def downgrade() -> None:
    op.drop_index("ix_crisp_sessions_last_activity_at", table_name="crisp_sessions")
    op.drop_index("ix_crisp_sessions_owner_id", table_name="crisp_sessions")
    op.drop_table("crisp_sessions")
