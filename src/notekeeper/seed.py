from __future__ import annotations

import logging
import mimetypes
import uuid
from pathlib import Path

from sqlmodel.ext.asyncio.session import AsyncSession

from notekeeper.integrations.storage.object_storage import (
    ObjectStorage,
    attachment_container_name,
)
from notekeeper.models import AttachmentSlot, Note
from notekeeper.repositories import notes_repo

logger = logging.getLogger(__name__)

# (summary, details, attachment file names looked up in the sample directory)
SAMPLE_NOTES: list[tuple[str, str, list[str]]] = [
    ("Running grocery list", "Milk\nEggs\nOranges", ["MilkAndEggs.png", "Oranges.png"]),
    ("Gift supplies notes", "Tape & Wrapping Paper", ["WrappingPaper.png", "Tape.png"]),
    (
        "Valentine's Day gift ideas",
        "Chocolate, Diamonds,\nNew Car",
        ["Chocolate.png", "Diamonds.png", "NewCar.png"],
    ),
    (
        "Storage tips",
        "Containers are created lazily\nArchives are rebuilt on demand",
        ["StorageLogo.png", "StorageTips.pdf"],
    ),
]


async def seed_sample_notes(
    session: AsyncSession,
    storage: ObjectStorage,
    *,
    attachments_dir: Path | None = None,
) -> list[Note]:
    """Insert the sample notes when the notes table is empty.

    Sample attachments are uploaded only for files present in ``attachments_dir``.
    """
    if await notes_repo.count_notes(session) > 0:
        return []

    created: list[Note] = []
    uploads: list[tuple[str, Path]] = []
    for summary, details, files in SAMPLE_NOTES:
        note = Note(id=str(uuid.uuid4()), summary=summary, details=details)
        available = [
            attachments_dir / name
            for name in files
            if attachments_dir is not None and (attachments_dir / name).is_file()
        ]
        note.attachment_count = len(available)
        session.add(note)
        for path in available:
            session.add(AttachmentSlot(note_id=note.id, attachment_id=path.name))
            uploads.append((note.id, path))
        created.append(note)
    await session.commit()

    for note_id, path in uploads:
        container = attachment_container_name(note_id)
        await storage.container_exists_or_create(container)
        content_type, _ = mimetypes.guess_type(path.name)
        await storage.put_object(container, path.name, path.read_bytes(), content_type=content_type)

    logger.info("seeded %d notes and %d attachments", len(created), len(uploads))
    return created
