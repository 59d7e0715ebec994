"""Attachment slot accounting.

Each note may hold at most ``max_attachments`` attachments. Reservations are
atomic against concurrent uploads: a slot row keyed by (note_id,
attachment_id) is inserted-or-ignored, and only a new slot bumps
``notes.attachment_count`` through a conditional UPDATE that cannot pass
the cap. Callers own the transaction boundary and must roll back when a
reservation raises.
"""

from __future__ import annotations

from typing import Any, cast

import sqlalchemy as sa
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.models import AttachmentSlot, Note, utc_now


class AttachmentLimitReachedError(Exception):
    def __init__(self, max_attachments: int) -> None:
        super().__init__(f"Attachment limit reached MaxAttachments: [{max_attachments}]")
        self.max_attachments = max_attachments


def _dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


async def _insert_slot_if_absent(
    session: AsyncSession, *, note_id: str, attachment_id: str
) -> bool:
    table = cast(sa.Table, AttachmentSlot.__table__)  # pyright: ignore[reportAttributeAccessIssue]
    values: dict[str, object] = {
        "note_id": note_id,
        "attachment_id": attachment_id,
        "created_at": utc_now(),
    }
    dialect = _dialect_name(session)

    if dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert as dialect_insert
    elif dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert as dialect_insert
    else:
        # Best-effort fallback for other DBs; the unique constraint still rejects duplicates.
        existing = await get_slot(session, note_id=note_id, attachment_id=attachment_id)
        if existing is not None:
            return False
        await session.exec(sa.insert(table).values(**values))  # type: ignore[call-overload]
        return True

    stmt = (
        dialect_insert(table)
        .values(**values)
        .on_conflict_do_nothing(index_elements=["note_id", "attachment_id"])
    )
    result = cast(Any, await session.exec(stmt))  # type: ignore[call-overload]
    return int(result.rowcount or 0) == 1


async def get_slot(
    session: AsyncSession, *, note_id: str, attachment_id: str
) -> AttachmentSlot | None:
    stmt = (
        select(AttachmentSlot)
        .where(AttachmentSlot.note_id == note_id)
        .where(AttachmentSlot.attachment_id == attachment_id)
    )
    return (await session.exec(stmt)).first()


async def reserve_attachment_slot(
    session: AsyncSession, *, note_id: str, attachment_id: str, max_attachments: int
) -> bool:
    """Reserve room for ``attachment_id``.

    Returns True when a new slot was taken, False when the attachment already
    held one (a replacement upload). Raises AttachmentLimitReachedError when
    the note is full; the caller must roll back so the slot insert is undone.
    """
    if not await _insert_slot_if_absent(session, note_id=note_id, attachment_id=attachment_id):
        return False

    stmt = (
        sa.update(Note)
        .where(Note.id == note_id)  # pyright: ignore[reportArgumentType]
        .where(Note.attachment_count < int(max_attachments))  # pyright: ignore[reportArgumentType]
        .values(attachment_count=Note.attachment_count + 1)
    )
    result = cast(Any, await session.exec(stmt))  # type: ignore[call-overload]
    if int(result.rowcount or 0) != 1:
        raise AttachmentLimitReachedError(int(max_attachments))
    return True


async def release_attachment_slot(
    session: AsyncSession, *, note_id: str, attachment_id: str
) -> bool:
    table = cast(sa.Table, AttachmentSlot.__table__)  # pyright: ignore[reportAttributeAccessIssue]
    result = cast(
        Any,
        await session.exec(  # type: ignore[call-overload]
            sa.delete(table)
            .where(table.c.note_id == note_id)
            .where(table.c.attachment_id == attachment_id)
        ),
    )
    if int(result.rowcount or 0) == 0:
        return False

    await session.exec(  # type: ignore[call-overload]
        sa.update(Note)
        .where(Note.id == note_id)  # pyright: ignore[reportArgumentType]
        .where(Note.attachment_count > 0)  # pyright: ignore[reportArgumentType]
        .values(attachment_count=Note.attachment_count - 1)
    )
    return True


async def delete_note_slots(session: AsyncSession, *, note_id: str) -> None:
    table = cast(sa.Table, AttachmentSlot.__table__)  # pyright: ignore[reportAttributeAccessIssue]
    await session.exec(sa.delete(table).where(table.c.note_id == note_id))  # type: ignore[call-overload]
