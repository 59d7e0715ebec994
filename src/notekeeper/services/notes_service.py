from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.config import settings
from notekeeper.integrations.storage.object_storage import (
    ObjectStorage,
    StorageError,
    archive_container_name,
    attachment_container_name,
)
from notekeeper.models import Note, utc_now
from notekeeper.repositories import attachments_repo, notes_repo

logger = logging.getLogger(__name__)


async def get_note_or_404(session: AsyncSession, *, note_id: str) -> Note:
    note = await notes_repo.get_note(session, note_id=note_id)
    if note is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="note not found")
    return note


async def create_note(session: AsyncSession, *, summary: str, details: str) -> Note:
    max_notes = int(settings.max_notes)
    if max_notes > 0 and await notes_repo.count_notes(session) >= max_notes:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": f"Note limit reached MaxNotes: [{max_notes}]",
                "details": {"max_notes": max_notes},
            },
        )

    note = Note(id=str(uuid.uuid4()), summary=summary, details=details)
    session.add(note)
    await session.commit()
    await session.refresh(note)
    return note


async def list_notes(session: AsyncSession) -> list[Note]:
    return await notes_repo.list_notes(session)


async def update_note(
    session: AsyncSession, *, note_id: str, summary: str | None, details: str | None
) -> Note:
    note = await get_note_or_404(session, note_id=note_id)
    if summary is None and details is None:
        return note

    if summary is not None:
        note.summary = summary
    if details is not None:
        note.details = details
    note.updated_at = utc_now()
    session.add(note)
    await session.commit()
    await session.refresh(note)
    logger.info("note updated note_id=%s", note_id)
    return note


async def purge_note_storage(storage: ObjectStorage, *, note_id: str) -> None:
    """Best-effort removal of a deleted note's attachment and archive containers."""
    for container in (attachment_container_name(note_id), archive_container_name(note_id)):
        try:
            _ = await storage.delete_container_if_exists(container)
        except StorageError:
            logger.warning(
                "failed to purge container note_id=%s container=%s",
                note_id,
                container,
                exc_info=True,
            )


async def delete_note(session: AsyncSession, storage: ObjectStorage, *, note_id: str) -> None:
    note = await get_note_or_404(session, note_id=note_id)

    await attachments_repo.delete_note_slots(session, note_id=note_id)
    await session.delete(note)
    await session.commit()

    # The row is gone first: in-flight archive jobs for this note become no-ops.
    await purge_note_storage(storage, note_id=note_id)
