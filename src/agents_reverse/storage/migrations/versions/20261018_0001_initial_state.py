"""Initial incremental state schema: tracked files and run history."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "files",
        sa.Column("path", sa.String(), nullable=False),
        sa.Column("content_hash", sa.String(), nullable=False),
        sa.Column("sum_generated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_analyzed_commit", sa.String(), nullable=True),
        sa.PrimaryKeyConstraint("path"),
    )

    op.create_table(
        "runs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("commit_hash", sa.String(), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("files_analyzed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("files_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_runs_commit_hash", "runs", ["commit_hash"])


def downgrade() -> None:
    op.drop_index("ix_runs_commit_hash", table_name="runs")
    op.drop_table("runs")
    op.drop_table("files")
