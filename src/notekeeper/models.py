from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, Text, UniqueConstraint
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Note(SQLModel, table=True):
    __tablename__ = "notes"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    # str(uuid4()); also the name of the note's attachment container.
    id: str = Field(primary_key=True, min_length=1, max_length=36)

    summary: str = Field(min_length=1, max_length=60)
    details: str = Field(default="", sa_column=Column(Text, nullable=False))

    # Number of reserved attachment slots; only changed by conditional UPDATEs in attachments_repo.
    attachment_count: int = Field(default=0)

    created_at: datetime = Field(default_factory=utc_now, index=True)
    updated_at: Optional[datetime] = Field(default=None)


class AttachmentSlot(SQLModel, table=True):
    __tablename__ = "attachment_slots"  # pyright: ignore[reportAssignmentType,reportIncompatibleVariableOverride]

    __table_args__ = (
        UniqueConstraint("note_id", "attachment_id", name="uq_attachment_slots_note_attachment"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    note_id: str = Field(index=True, foreign_key="notes.id", min_length=1, max_length=36)
    attachment_id: str = Field(min_length=1, max_length=255)
    created_at: datetime = Field(default_factory=utc_now)
