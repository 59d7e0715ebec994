"""Notes router (minimal surface the attachment and archive routes hang off)."""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, Request, Response, status
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.db import get_session
from notekeeper.integrations.storage.object_storage import ObjectStorage, get_object_storage
from notekeeper.models import Note
from notekeeper.schemas import Note as NoteSchema
from notekeeper.schemas import NoteCreateRequest, NoteUpdateRequest
from notekeeper.services import notes_service

router = APIRouter(tags=["notes"])


def _to_schema(note: Note) -> NoteSchema:
    return NoteSchema(
        id=note.id,
        summary=note.summary,
        details=note.details,
        attachment_count=note.attachment_count,
        created_at=note.created_at,
        updated_at=note.updated_at,
    )


@router.post("/notes", response_model=NoteSchema, status_code=status.HTTP_201_CREATED)
async def create_note(
    payload: NoteCreateRequest,
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
) -> NoteSchema:
    note = await notes_service.create_note(
        session, summary=payload.summary, details=payload.details
    )
    response.headers["Location"] = str(request.url_for("get_note", note_id=note.id))
    return _to_schema(note)


@router.get("/notes", response_model=list[NoteSchema])
async def list_notes(session: AsyncSession = Depends(get_session)) -> list[NoteSchema]:
    return [_to_schema(note) for note in await notes_service.list_notes(session)]


@router.get("/notes/{note_id}", response_model=NoteSchema)
async def get_note(
    note_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> NoteSchema:
    note = await notes_service.get_note_or_404(session, note_id=str(note_id))
    return _to_schema(note)


@router.patch("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def update_note(
    note_id: UUID,
    payload: NoteUpdateRequest,
    session: AsyncSession = Depends(get_session),
) -> Response:
    _ = await notes_service.update_note(
        session, note_id=str(note_id), summary=payload.summary, details=payload.details
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.delete("/notes/{note_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_note(
    note_id: UUID,
    session: AsyncSession = Depends(get_session),
    storage: ObjectStorage = Depends(get_object_storage),
) -> Response:
    await notes_service.delete_note(session, storage, note_id=str(note_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)
