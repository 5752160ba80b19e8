"""local durable store (notes + sync_queue + user + sync_state)

Revision ID: 20261018_0001
Revises: None
Create Date: 2026-10-18 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect


revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def _table_exists(table_name: str) -> bool:
    bind = op.get_bind()
    insp = inspect(bind)
    return table_name in insp.get_table_names()


def upgrade() -> None:
    if not _table_exists("notes"):
        op.create_table(
            "notes",
            sa.Column("local_id", sa.String(length=36), primary_key=True, nullable=False),
            sa.Column("remote_id", sa.String(length=128), nullable=True),
            sa.Column("title", sa.String(length=500), nullable=False, server_default=""),
            sa.Column("content", sa.Text(), nullable=False),
            sa.Column("last_modified_ms", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
            sa.Column("synced", sa.Boolean(), nullable=False, server_default=sa.text("0")),
            sa.Column("owner_id", sa.String(length=128), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )
        # NULLs are distinct in a unique index: only assigned remote ids collide.
        op.create_index("ix_notes_remote_id", "notes", ["remote_id"], unique=True)
        op.create_index("ix_notes_title", "notes", ["title"], unique=False)
        op.create_index("ix_notes_last_modified_ms", "notes", ["last_modified_ms"], unique=False)
        op.create_index("ix_notes_synced", "notes", ["synced"], unique=False)
        op.create_index("ix_notes_owner_id", "notes", ["owner_id"], unique=False)

    if not _table_exists("sync_queue"):
        op.create_table(
            "sync_queue",
            sa.Column("entry_id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
            sa.Column("local_id", sa.String(length=36), nullable=True),
            sa.Column("action", sa.String(length=10), nullable=False),
            sa.Column("payload_json", sa.JSON(), nullable=True),
            sa.Column("enqueued_at_ms", sa.BigInteger(), nullable=False),
            sa.Column("retry_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        )
        op.create_index("ix_sync_queue_local_id", "sync_queue", ["local_id"], unique=False)
        op.create_index("ix_sync_queue_enqueued_at_ms", "sync_queue", ["enqueued_at_ms"], unique=False)

    if not _table_exists("user"):
        op.create_table(
            "user",
            sa.Column("user_id", sa.String(length=128), primary_key=True, nullable=False),
            sa.Column("username", sa.String(length=200), nullable=True),
            sa.Column("token", sa.Text(), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )

    if not _table_exists("sync_state"):
        op.create_table(
            "sync_state",
            sa.Column("key", sa.String(length=64), primary_key=True, nullable=False),
            sa.Column("value_ms", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        )


def downgrade() -> None:
    for name in ("sync_state", "user", "sync_queue", "notes"):
        if _table_exists(name):
            op.drop_table(name)
