"""Archive router.

POST only queues a request and answers 202 with the future archive id; the
archive appears in the listing once the worker has uploaded it.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.db import get_session
from notekeeper.http_headers import stream_download_response
from notekeeper.integrations.queue.archive_queue import ArchiveQueue, get_archive_queue
from notekeeper.integrations.storage.object_storage import (
    ARCHIVE_CONTENT_TYPE,
    ObjectStorage,
    get_object_storage,
)
from notekeeper.schemas import ArchiveAccepted, StoredObject
from notekeeper.services import archives_service

router = APIRouter(tags=["archives"])


@router.post(
    "/notes/{note_id}/archives",
    response_model=ArchiveAccepted,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_archive(
    note_id: UUID,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    queue: ArchiveQueue = Depends(get_archive_queue),
) -> ArchiveAccepted:
    archive_id = await archives_service.request_archive(
        session=session, queue=queue, note_id=str(note_id)
    )
    location = request.url_for("download_archive", note_id=str(note_id), archive_id=archive_id)
    response.headers["Location"] = str(location)
    return ArchiveAccepted(note_id=str(note_id), archive_id=archive_id)


@router.get(
    "/notes/{note_id}/archives",
    response_model=list[StoredObject],
    response_model_by_alias=True,
)
async def list_archives(
    note_id: UUID,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> list[StoredObject]:
    infos = await archives_service.list_archives(
        session=session, storage=storage, note_id=str(note_id)
    )
    return [
        StoredObject(
            content_type=ARCHIVE_CONTENT_TYPE,
            attachment_id=info.name,
            created=info.created_at,
            last_modified=info.last_modified,
            length=info.size,
        )
        for info in infos
    ]


@router.get("/notes/{note_id}/archives/{archive_id}")
async def download_archive(
    note_id: UUID,
    archive_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    stream = await archives_service.open_archive(
        session=session, storage=storage, note_id=str(note_id), archive_id=archive_id
    )
    return stream_download_response(stream, filename=archive_id, media_type=ARCHIVE_CONTENT_TYPE)


@router.delete("/notes/{note_id}/archives/{archive_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_archive(
    note_id: UUID,
    archive_id: str,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    await archives_service.delete_archive(
        session=session, storage=storage, note_id=str(note_id), archive_id=archive_id
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)
