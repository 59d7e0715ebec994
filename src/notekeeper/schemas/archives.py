from __future__ import annotations

from pydantic import BaseModel


class ArchiveAccepted(BaseModel):
    note_id: str
    archive_id: str
