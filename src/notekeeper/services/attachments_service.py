from __future__ import annotations

import logging
from typing import BinaryIO

from fastapi import HTTPException, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.config import settings
from notekeeper.integrations.storage.object_storage import (
    ContainerNotFoundError,
    InvalidStorageKeyError,
    ObjectInfo,
    ObjectNotFoundError,
    ObjectStorage,
    attachment_container_name,
    validate_object_key,
)
from notekeeper.repositories import attachments_repo
from notekeeper.services.notes_service import get_note_or_404

logger = logging.getLogger(__name__)


def _validate_attachment_id(attachment_id: str) -> str:
    try:
        return validate_object_key(attachment_id)
    except InvalidStorageKeyError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="invalid attachment id"
        ) from exc


async def list_container(storage: ObjectStorage, container: str) -> list[ObjectInfo]:
    try:
        return [info async for info in storage.list_objects(container) if not info.deleted]
    except ContainerNotFoundError:
        return []


async def _object_exists(storage: ObjectStorage, container: str, key: str) -> bool:
    try:
        _ = await storage.get_object_info(container, key)
    except ObjectNotFoundError:
        return False
    return True


async def put_attachment(
    *,
    session: AsyncSession,
    storage: ObjectStorage,
    note_id: str,
    attachment_id: str,
    data: bytes,
    content_type: str | None,
) -> bool:
    """Create or replace an attachment. Returns True when it did not exist before."""
    attachment_id = _validate_attachment_id(attachment_id)
    _ = await get_note_or_404(session, note_id=note_id)

    max_attachments = int(settings.max_attachments)
    try:
        reserved = await attachments_repo.reserve_attachment_slot(
            session,
            note_id=note_id,
            attachment_id=attachment_id,
            max_attachments=max_attachments,
        )
        await session.commit()
    except attachments_repo.AttachmentLimitReachedError as exc:
        await session.rollback()
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={"message": str(exc), "details": {"max_attachments": max_attachments}},
        ) from exc
    except Exception:
        await session.rollback()
        raise

    container = attachment_container_name(note_id)
    try:
        await storage.container_exists_or_create(container)
        existed = await _object_exists(storage, container, attachment_id)
        await storage.put_object(container, attachment_id, data, content_type=content_type)
    except Exception:
        if reserved:
            # Give the slot back; the object never landed.
            try:
                _ = await attachments_repo.release_attachment_slot(
                    session, note_id=note_id, attachment_id=attachment_id
                )
                await session.commit()
            except Exception:
                await session.rollback()
                logger.warning(
                    "failed to release attachment slot note_id=%s attachment_id=%s",
                    note_id,
                    attachment_id,
                    exc_info=True,
                )
        raise

    logger.info(
        "attachment %s note_id=%s attachment_id=%s size=%d",
        "replaced" if existed else "created",
        note_id,
        attachment_id,
        len(data),
    )
    return not existed


async def list_attachments(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str
) -> list[ObjectInfo]:
    _ = await get_note_or_404(session, note_id=note_id)
    return await list_container(storage, attachment_container_name(note_id))


async def open_attachment(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str, attachment_id: str
) -> tuple[ObjectInfo, BinaryIO]:
    attachment_id = _validate_attachment_id(attachment_id)
    _ = await get_note_or_404(session, note_id=note_id)

    container = attachment_container_name(note_id)
    try:
        info = await storage.get_object_info(container, attachment_id)
        stream = await storage.get_object_stream(container, attachment_id)
    except ObjectNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="attachment not found"
        ) from exc
    return info, stream


async def delete_attachment(
    *, session: AsyncSession, storage: ObjectStorage, note_id: str, attachment_id: str
) -> None:
    attachment_id = _validate_attachment_id(attachment_id)
    _ = await get_note_or_404(session, note_id=note_id)

    container = attachment_container_name(note_id)
    if await storage.container_exists(container):
        _ = await storage.delete_object_if_exists(container, attachment_id)

    _ = await attachments_repo.release_attachment_slot(
        session, note_id=note_id, attachment_id=attachment_id
    )
    await session.commit()
