"""Archive worker: turns queued archive requests into ZIP objects.

Each delivery moves through Received -> Validating -> Building -> Uploaded,
or ends Failed. Everything needed to finish a job is derived from
``(note_id, archive_id)``, so a redelivered message simply re-lists the
note's current attachments and overwrites the same archive key.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Awaitable, Callable
from typing import BinaryIO
from uuid import UUID

import anyio
import anyio.to_thread
from starlette.concurrency import run_in_threadpool

from notekeeper.archive.builder import ZipArchiveBuilder
from notekeeper.integrations.queue.archive_queue import (
    ArchiveQueue,
    ArchiveRequest,
    MalformedArchiveRequestError,
    QueueError,
    QueueMessage,
    decode_archive_request,
)
from notekeeper.integrations.storage.object_storage import (
    ARCHIVE_CONTENT_TYPE,
    ObjectStorage,
    StorageError,
    archive_container_name,
    attachment_container_name,
)

logger = logging.getLogger(__name__)

NoteExists = Callable[[UUID], Awaitable[bool]]

_COPY_CHUNK_BYTES = 1024 * 1024
# How long a timed-out job waits for a stalled stream to close before abandoning it.
_CLOSE_GRACE_SECONDS = 1.0


class ArchiveOutcome(str, enum.Enum):
    UPLOADED = "uploaded"
    # Note or its attachment container is gone; acknowledged, nothing written.
    SKIPPED = "skipped"
    # Malformed or poison message; acknowledged and discarded.
    DROPPED = "dropped"
    # Build aborted; released back to the queue for a delayed retry.
    FAILED = "failed"


async def _read_chunk(stream: BinaryIO) -> bytes:
    # An abandoned read keeps running in its thread; its result is dropped.
    return await anyio.to_thread.run_sync(stream.read, _COPY_CHUNK_BYTES, abandon_on_cancel=True)


async def _close_stream(stream: BinaryIO) -> None:
    with anyio.move_on_after(_CLOSE_GRACE_SECONDS, shield=True):
        await anyio.to_thread.run_sync(stream.close, abandon_on_cancel=True)


class ArchiveWorker:
    def __init__(
        self,
        *,
        storage: ObjectStorage,
        queue: ArchiveQueue,
        note_exists: NoteExists,
        timeout_seconds: float = 60.0,
        concurrency: int = 4,
        batch_size: int = 10,
        poll_seconds: float = 2.0,
        max_receive_count: int = 5,
        retry_delay_seconds: int = 5,
    ) -> None:
        self._storage = storage
        self._queue = queue
        self._note_exists = note_exists
        self._timeout_seconds = timeout_seconds
        self._limiter = anyio.CapacityLimiter(max(1, concurrency))
        self._batch_size = max(1, batch_size)
        self._poll_seconds = poll_seconds
        self._max_receive_count = max_receive_count
        self._retry_delay_seconds = max(0, retry_delay_seconds)

    async def _copy_entry(self, builder: ZipArchiveBuilder, name: str, stream: BinaryIO) -> int:
        written = 0
        entry = builder.open_entry(name)
        try:
            while True:
                chunk = await _read_chunk(stream)
                if not chunk:
                    return written
                _ = await run_in_threadpool(entry.write, chunk)
                written += len(chunk)
        finally:
            entry.close()

    async def _build(self, container: str) -> tuple[bytes, list[str]]:
        # One listing call is the snapshot; later additions are not included.
        snapshot = [
            info
            async for info in self._storage.list_objects(container, include_deleted=False)
            if not info.deleted
        ]
        snapshot.sort(key=lambda info: info.name)

        builder = ZipArchiveBuilder()
        for info in snapshot:
            stream = await self._storage.get_object_stream(container, info.name)
            try:
                _ = await self._copy_entry(builder, info.name, stream)
            finally:
                await _close_stream(stream)
        data = await run_in_threadpool(builder.getvalue)
        return data, builder.entry_names

    async def process_request(self, request: ArchiveRequest) -> ArchiveOutcome:
        note_id = request.note_id
        archive_id = request.archive_id
        source = attachment_container_name(note_id)

        if not await self._note_exists(note_id):
            logger.info("archive skipped, note missing note_id=%s archive_id=%s", note_id, archive_id)
            return ArchiveOutcome.SKIPPED
        if not await self._storage.container_exists(source):
            logger.info(
                "archive skipped, no attachment container note_id=%s archive_id=%s",
                note_id,
                archive_id,
            )
            return ArchiveOutcome.SKIPPED

        # Nothing is uploaded until every attachment has been read.
        target = archive_container_name(note_id)
        with anyio.fail_after(self._timeout_seconds):
            data, entries = await self._build(source)
            await self._storage.container_exists_or_create(target)
            await self._storage.put_object(
                target, archive_id, data, content_type=ARCHIVE_CONTENT_TYPE
            )

        if not await self._note_exists(note_id):
            # Deleted while building: its purge may have run before our upload.
            _ = await self._storage.delete_container_if_exists(target)
            logger.info(
                "archive discarded, note deleted during build note_id=%s archive_id=%s",
                note_id,
                archive_id,
            )
            return ArchiveOutcome.SKIPPED

        logger.info(
            "archive uploaded note_id=%s archive_id=%s entries=%d bytes=%d",
            note_id,
            archive_id,
            len(entries),
            len(data),
        )
        return ArchiveOutcome.UPLOADED

    async def _ack(self, message: QueueMessage) -> None:
        try:
            await self._queue.ack(message)
        except QueueError:
            # Redelivery re-runs an idempotent job.
            logger.warning("archive message ack failed receipt=%s", message.receipt, exc_info=True)

    async def _release(self, message: QueueMessage) -> None:
        # Back off linearly with each delivery.
        delay = self._retry_delay_seconds * max(1, message.receive_count)
        try:
            await self._queue.release(message, delay_seconds=delay)
        except QueueError:
            # The visibility timeout still brings it back.
            logger.warning(
                "archive message release failed receipt=%s", message.receipt, exc_info=True
            )

    async def handle_message(self, message: QueueMessage) -> ArchiveOutcome:
        try:
            request = decode_archive_request(message.body)
        except MalformedArchiveRequestError as exc:
            logger.warning("dropping malformed archive request: %s", exc)
            await self._ack(message)
            return ArchiveOutcome.DROPPED

        try:
            outcome = await self.process_request(request)
        except (StorageError, OSError, TimeoutError) as exc:
            return await self._fail(message, request, exc)
        except Exception as exc:
            logger.exception(
                "unexpected archive failure note_id=%s archive_id=%s",
                request.note_id,
                request.archive_id,
            )
            return await self._fail(message, request, exc)

        await self._ack(message)
        return outcome

    async def _fail(
        self, message: QueueMessage, request: ArchiveRequest, exc: BaseException
    ) -> ArchiveOutcome:
        if self._max_receive_count > 0 and message.receive_count >= self._max_receive_count:
            logger.error(
                "dropping archive request after %d deliveries note_id=%s archive_id=%s error=%r",
                message.receive_count,
                request.note_id,
                request.archive_id,
                exc,
            )
            await self._ack(message)
            return ArchiveOutcome.DROPPED

        logger.warning(
            "archive build failed, released for retry note_id=%s archive_id=%s attempt=%d error=%r",
            request.note_id,
            request.archive_id,
            message.receive_count,
            exc,
        )
        await self._release(message)
        return ArchiveOutcome.FAILED

    async def run_once(self) -> list[ArchiveOutcome]:
        messages = await self._queue.receive(
            max_messages=self._batch_size, wait_seconds=self._poll_seconds
        )
        outcomes: list[ArchiveOutcome] = []

        async def _handle(message: QueueMessage) -> None:
            async with self._limiter:
                outcomes.append(await self.handle_message(message))

        async with anyio.create_task_group() as tg:
            for message in messages:
                tg.start_soon(_handle, message)
        return outcomes

    async def run_forever(self, stop: anyio.Event | None = None) -> None:
        await self._queue.ensure_exists()
        logger.info("archive worker started")
        while stop is None or not stop.is_set():
            try:
                _ = await self.run_once()
            except QueueError:
                logger.warning("archive queue receive failed", exc_info=True)
                await anyio.sleep(self._poll_seconds)
        logger.info("archive worker stopped")
