"""Attachments router: pass-through uploads guarded by the per-note attachment cap."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Request, Response, UploadFile, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.config import settings
from notekeeper.db import get_session
from notekeeper.http_headers import stream_download_response
from notekeeper.integrations.storage.object_storage import (
    DEFAULT_CONTENT_TYPE,
    ObjectInfo,
    ObjectStorage,
    get_object_storage,
)
from notekeeper.schemas import StoredObject
from notekeeper.services import attachments_service

router = APIRouter(tags=["attachments"])


async def _read_upload_file_limited(*, file: UploadFile, max_bytes: int) -> bytes:
    # Read the file in chunks and hard-stop once size exceeds max_bytes.
    buf = bytearray()
    chunk_size = 1024 * 1024
    while True:
        chunk = await file.read(chunk_size)
        if not chunk:
            break
        buf.extend(chunk)
        if len(buf) > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_CONTENT_TOO_LARGE,
                detail="attachment too large",
            )
    return bytes(buf)


def _to_stored_object(info: ObjectInfo) -> StoredObject:
    return StoredObject(
        content_type=info.content_type,
        attachment_id=info.name,
        created=info.created_at,
        last_modified=info.last_modified,
        length=info.size,
    )


@router.put("/notes/{note_id}/attachments/{attachment_id}", status_code=status.HTTP_201_CREATED)
async def put_attachment(
    note_id: UUID,
    attachment_id: str,
    file: Annotated[UploadFile, File()],
    request: Request,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    max_bytes = int(settings.attachments_max_size_bytes)
    if max_bytes > 0:
        data = await _read_upload_file_limited(file=file, max_bytes=max_bytes)
    else:
        data = await file.read()

    created = await attachments_service.put_attachment(
        session=session,
        storage=storage,
        note_id=str(note_id),
        attachment_id=attachment_id,
        data=data,
        content_type=file.content_type,
    )
    if not created:
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    location = request.url_for("get_attachment", note_id=str(note_id), attachment_id=attachment_id)
    return Response(status_code=status.HTTP_201_CREATED, headers={"Location": str(location)})


@router.get(
    "/notes/{note_id}/attachments",
    response_model=list[StoredObject],
    response_model_by_alias=True,
)
async def list_attachments(
    note_id: UUID,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> list[StoredObject]:
    infos = await attachments_service.list_attachments(
        session=session, storage=storage, note_id=str(note_id)
    )
    return [_to_stored_object(info) for info in infos]


@router.get("/notes/{note_id}/attachments/{attachment_id}")
async def get_attachment(
    note_id: UUID,
    attachment_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    info, stream = await attachments_service.open_attachment(
        session=session, storage=storage, note_id=str(note_id), attachment_id=attachment_id
    )
    return stream_download_response(
        stream,
        filename=info.name,
        media_type=info.content_type or DEFAULT_CONTENT_TYPE,
        length=info.size,
    )


@router.delete(
    "/notes/{note_id}/attachments/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_attachment(
    note_id: UUID,
    attachment_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    await attachments_service.delete_attachment(
        session=session, storage=storage, note_id=str(note_id), attachment_id=attachment_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
