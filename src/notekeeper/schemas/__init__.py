from __future__ import annotations

from .errors import ErrorResponse
from .archives import ArchiveAccepted
from .notes import Note, NoteCreateRequest, NoteUpdateRequest
from .objects import StoredObject

__all__ = [
    "ArchiveAccepted",
    "ErrorResponse",
    "Note",
    "NoteCreateRequest",
    "NoteUpdateRequest",
    "StoredObject",
]
