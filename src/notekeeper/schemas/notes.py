from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class Note(BaseModel):
    id: str = Field(min_length=1, max_length=36)
    summary: str
    details: str
    attachment_count: int
    created_at: datetime
    updated_at: datetime | None = None


class NoteCreateRequest(BaseModel):
    summary: str = Field(min_length=1, max_length=60)
    details: str = Field(min_length=1, max_length=1024)


class NoteUpdateRequest(BaseModel):
    # Omitted fields are left unchanged.
    summary: str | None = Field(default=None, min_length=1, max_length=60)
    details: str | None = Field(default=None, min_length=1, max_length=1024)
