"""Track the delivery-record shape per session row.

Rows written before this revision hold the single ``vscode_link`` field and
are marked version 1; ``crisp migrate`` rewrites them.

Revision ID: 0002_session_schema_version
Revises: 0001_crisp_sessions
Create Date: 2026-03-11
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "0002_session_schema_version"
down_revision: str | None = "0001_crisp_sessions"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.add_column(
        "crisp_sessions",
        sa.Column("schema_version", sa.Integer(), nullable=False, server_default="1"),
    )


def downgrade() -> None:
    op.drop_column("crisp_sessions", "schema_version")
