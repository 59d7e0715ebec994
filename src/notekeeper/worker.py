"""Standalone archive worker process (``notekeeper-archive-worker``)."""

from __future__ import annotations

import argparse
import logging
import signal
from uuid import UUID

import anyio

from notekeeper.archive.worker import ArchiveWorker
from notekeeper.config import settings
from notekeeper.db import dispose_engine, session_scope
from notekeeper.integrations.queue.archive_queue import ArchiveQueue, get_archive_queue
from notekeeper.integrations.storage.object_storage import ObjectStorage, get_object_storage
from notekeeper.repositories import notes_repo

logger = logging.getLogger(__name__)


async def note_exists_in_db(note_id: UUID) -> bool:
    async with session_scope() as session:
        return await notes_repo.note_exists(session, note_id=str(note_id))


def build_archive_worker(
    *, storage: ObjectStorage | None = None, queue: ArchiveQueue | None = None
) -> ArchiveWorker:
    return ArchiveWorker(
        storage=storage if storage is not None else get_object_storage(),
        queue=queue if queue is not None else get_archive_queue(),
        note_exists=note_exists_in_db,
        timeout_seconds=settings.archive_worker_timeout_seconds,
        concurrency=settings.archive_worker_concurrency,
        batch_size=settings.archive_worker_batch_size,
        poll_seconds=settings.archive_worker_poll_seconds,
        max_receive_count=settings.archive_worker_max_receive_count,
        retry_delay_seconds=settings.archive_worker_retry_delay_seconds,
    )


async def _run(*, once: bool) -> None:
    worker = build_archive_worker()
    try:
        if once:
            outcomes = await worker.run_once()
            logger.info("processed %d archive request(s): %s", len(outcomes), outcomes)
            return

        stop = anyio.Event()
        async with anyio.create_task_group() as tg:

            async def _watch_signals() -> None:
                with anyio.open_signal_receiver(signal.SIGINT, signal.SIGTERM) as signals:
                    async for signum in signals:
                        logger.info("received signal %s, stopping after current batch", signum)
                        stop.set()
                        return

            tg.start_soon(_watch_signals)
            await worker.run_forever(stop)
            tg.cancel_scope.cancel()
    finally:
        await dispose_engine()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Build queued attachment archives.")
    parser.add_argument(
        "--once", action="store_true", help="process a single batch of messages and exit"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    anyio.run(lambda: _run(once=args.once))


if __name__ == "__main__":
    main()
