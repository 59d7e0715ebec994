from __future__ import annotations

import sqlalchemy as sa
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.models import Note


async def get_note(session: AsyncSession, *, note_id: str) -> Note | None:
    return (await session.exec(select(Note).where(Note.id == note_id))).first()


async def note_exists(session: AsyncSession, *, note_id: str) -> bool:
    stmt = select(Note.id).where(Note.id == note_id)
    return (await session.exec(stmt)).first() is not None


async def count_notes(session: AsyncSession) -> int:
    stmt = select(sa.func.count()).select_from(Note)
    return int((await session.exec(stmt)).one())


async def list_notes(session: AsyncSession) -> list[Note]:
    stmt = select(Note).order_by(Note.created_at, Note.id)  # pyright: ignore[reportArgumentType]
    return list((await session.exec(stmt)).all())
