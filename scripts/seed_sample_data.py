from __future__ import annotations

import argparse
import logging
from pathlib import Path

import anyio

from notekeeper.config import settings
from notekeeper.db import dispose_engine, init_db, session_scope
from notekeeper.integrations.storage.object_storage import get_object_storage
from notekeeper.seed import seed_sample_notes


async def _seed(attachments_dir: Path | None) -> int:
    await init_db()
    try:
        async with session_scope() as session:
            notes = await seed_sample_notes(
                session, get_object_storage(), attachments_dir=attachments_dir
            )
    finally:
        await dispose_engine()
    return len(notes)


def main() -> int:
    parser = argparse.ArgumentParser(description="Seed sample notes into an empty database.")
    parser.add_argument(
        "--attachments-dir",
        default=None,
        help="Directory holding the sample attachment files (optional).",
    )
    args = parser.parse_args()

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    attachments_dir = Path(args.attachments_dir) if args.attachments_dir else None
    count = anyio.run(_seed, attachments_dir)
    print(f"seeded {count} notes into {settings.database_url}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
