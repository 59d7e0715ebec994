"""notes + attachment_slots

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 00:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "notes",
        sa.Column("id", sa.String(length=36), primary_key=True, nullable=False),
        sa.Column("summary", sa.String(length=60), nullable=False),
        sa.Column("details", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("attachment_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_notes_created_at", "notes", ["created_at"], unique=False)

    op.create_table(
        "attachment_slots",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True, nullable=False),
        sa.Column("note_id", sa.String(length=36), sa.ForeignKey("notes.id"), nullable=False),
        sa.Column("attachment_id", sa.String(length=255), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "note_id", "attachment_id", name="uq_attachment_slots_note_attachment"
        ),
    )
    op.create_index(
        "ix_attachment_slots_note_id", "attachment_slots", ["note_id"], unique=False
    )


def downgrade() -> None:
    op.drop_table("attachment_slots")
    op.drop_table("notes")
