"""Archive requests (producer side) and the archive read path.

``request_archive`` only validates the note, mints an id and enqueues; the
archive object shows up in ``list_archives`` once a worker has built it.
"""

from __future__ import annotations

import logging
import uuid
from typing import BinaryIO

from fastapi import HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.integrations.queue.archive_queue import (
    ArchiveQueue,
    ArchiveRequest,
    enqueue_archive_request,
)
from notekeeper.integrations.storage.object_storage import (
    InvalidStorageKeyError,
    ObjectInfo,
    ObjectNotFoundError,
    ObjectStorage,
    archive_container_name,
    validate_object_key,
)
from notekeeper.services.attachments_service import list_container
from notekeeper.services.notes_service import get_note_or_404

logger = logging.getLogger(__name__)

ARCHIVE_SUFFIX = ".zip"


def new_archive_id() -> str:
    return f"{uuid.uuid4()}{ARCHIVE_SUFFIX}"


def _validate_archive_id(archive_id: str) -> str:
    try:
        return validate_object_key(archive_id)
    except InvalidStorageKeyError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="archive not found") from exc


async def request_archive(
    *, session: AsyncSession, queue: ArchiveQueue, note_id: str
) -> str:
    note = await get_note_or_404(session, note_id=note_id)

    await queue.ensure_exists()
    archive_id = new_archive_id()
    await enqueue_archive_request(
        queue, ArchiveRequest(note_id=uuid.UUID(note.id), archive_id=archive_id)
    )
    logger.info("archive requested note_id=%s archive_id=%s", note_id, archive_id)
    return archive_id


async def list_archives(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str
) -> list[ObjectInfo]:
    _ = await get_note_or_404(session, note_id=note_id)
    infos = await list_container(storage, archive_container_name(note_id))
    return sorted(infos, key=lambda info: info.name)


async def open_archive(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str, archive_id: str
) -> BinaryIO:
    archive_id = _validate_archive_id(archive_id)
    _ = await get_note_or_404(session, note_id=note_id)

    try:
        return await storage.get_object_stream(archive_container_name(note_id), archive_id)
    except ObjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="archive not found") from exc


async def delete_archive(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str, archive_id: str
) -> None:
    archive_id = _validate_archive_id(archive_id)
    _ = await get_note_or_404(session, note_id=note_id)

    container = archive_container_name(note_id)
    if not await storage.container_exists(container):
        return
    if not await storage.delete_object_if_exists(container, archive_id):
        logger.info("archive already absent note_id=%s archive_id=%s", note_id, archive_id)
