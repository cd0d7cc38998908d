"""Create the queue_records table.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000+00:00

One table holds the records of every queue, keyed by the collection column.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Apply migration: create queue_records."""
    op.create_table(
        "queue_records",
        sa.Column("record_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("collection", sa.String(100), nullable=False),
        sa.Column("received_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("available", sa.DateTime(timezone=True), nullable=True),
        # Producer payload
        sa.Column("data", postgresql.JSONB(), nullable=True),
        # Failure tracking
        sa.Column("retry_count", sa.Integer(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("immediate_failure", sa.Boolean(), nullable=True),
        sa.Column("notify_failure_reason", sa.Text(), nullable=True),
        sa.Column("processed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reset_date", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("record_id", name="pk_queue_records"),
    )

    op.create_index(
        "ix_queue_records_pending",
        "queue_records",
        ["collection", "status", "available", "received_date"],
    )
    op.create_index(
        "ix_queue_records_processed",
        "queue_records",
        ["collection", "status", "processed_date"],
    )


def downgrade() -> None:
    """Revert migration: drop queue_records."""
    op.drop_index("ix_queue_records_processed", table_name="queue_records")
    op.drop_index("ix_queue_records_pending", table_name="queue_records")
    op.drop_table("queue_records")
