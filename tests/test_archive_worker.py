from __future__ import annotations

import io
import json
import time
import uuid
import zipfile
from pathlib import Path
from typing import BinaryIO
from uuid import UUID

import anyio
import pytest

from notekeeper.archive.worker import ArchiveOutcome, ArchiveWorker
from notekeeper.integrations.queue.archive_queue import (
    ArchiveRequest,
    QueueMessage,
    encode_archive_request,
    enqueue_archive_request,
)
from notekeeper.integrations.queue.local_queue import LocalArchiveQueue
from notekeeper.integrations.storage.local_storage import LocalObjectStorage
from notekeeper.integrations.storage.object_storage import StorageError

NOTE_ID = uuid.UUID("0b9a7c55-2d5e-4b0c-9a64-4f8d0a1e2c33")


class _FlakyStorage(LocalObjectStorage):
    """Fails (or stalls) when a chosen attachment is opened."""

    def __init__(self, *, root_dir: str, fail_on: str = "", stall_on: str = "") -> None:
        super().__init__(root_dir=root_dir)
        self.fail_on = fail_on
        self.stall_on = stall_on
        self.puts: list[tuple[str, str]] = []

    async def get_object_stream(self, container: str, key: str) -> BinaryIO:
        if key == self.fail_on:
            raise StorageError(f"simulated read failure: {key}")
        if key == self.stall_on:
            await anyio.sleep(5)
        return await super().get_object_stream(container, key)

    async def put_object(
        self, container: str, key: str, data: bytes, *, content_type: str | None = None
    ) -> None:
        self.puts.append((container, key))
        await super().put_object(container, key, data, content_type=content_type)


class _RecordingQueue(LocalArchiveQueue):
    def __init__(self, *, root_dir: str) -> None:
        super().__init__(root_dir=root_dir, queue_name="q")
        self.acked: list[str] = []
        self.released: list[tuple[str, int]] = []

    async def ack(self, message: QueueMessage) -> None:
        self.acked.append(message.receipt)
        await super().ack(message)

    async def release(self, message: QueueMessage, *, delay_seconds: int = 0) -> None:
        self.released.append((message.receipt, delay_seconds))
        await super().release(message, delay_seconds=delay_seconds)


def _existing(*note_ids: UUID):
    known = set(note_ids)

    async def _note_exists(note_id: UUID) -> bool:
        return note_id in known

    return _note_exists


def _make_worker(tmp_path: Path, storage: LocalObjectStorage | None = None, **kwargs: object):
    storage = storage if storage is not None else LocalObjectStorage(root_dir=str(tmp_path / "blobs"))
    queue = _RecordingQueue(root_dir=str(tmp_path / "queue"))
    options: dict[str, object] = {
        "note_exists": _existing(NOTE_ID),
        "timeout_seconds": 10.0,
        "poll_seconds": 0.0,
        "max_receive_count": 5,
    }
    options.update(kwargs)
    worker = ArchiveWorker(storage=storage, queue=queue, **options)  # type: ignore[arg-type]
    return worker, storage, queue


async def _seed(storage: LocalObjectStorage, files: dict[str, bytes], note_id: UUID = NOTE_ID) -> None:
    await storage.container_exists_or_create(str(note_id))
    for name, data in files.items():
        await storage.put_object(str(note_id), name, data, content_type="image/png")


async def _read_archive(storage: LocalObjectStorage, archive_id: str) -> dict[str, bytes]:
    stream = await storage.get_object_stream(f"{NOTE_ID}-zip", archive_id)
    try:
        with zipfile.ZipFile(io.BytesIO(stream.read())) as zf:
            return {name: zf.read(name) for name in zf.namelist()}
    finally:
        stream.close()


def _message(archive_id: str, *, receive_count: int = 1, receipt: str = "r1") -> QueueMessage:
    body = encode_archive_request(ArchiveRequest(note_id=NOTE_ID, archive_id=archive_id))
    return QueueMessage(body=body, receipt=receipt, receive_count=receive_count)


@pytest.mark.anyio
async def test_worker_archives_every_attachment(tmp_path: Path):
    worker, storage, _ = _make_worker(tmp_path)
    await _seed(storage, {"b.png": b"b" * 20, "a.png": b"a" * 10})

    outcome = await worker.process_request(ArchiveRequest(note_id=NOTE_ID, archive_id="arc-1.zip"))

    assert outcome == ArchiveOutcome.UPLOADED
    entries = await _read_archive(storage, "arc-1.zip")
    assert entries == {"a.png": b"a" * 10, "b.png": b"b" * 20}

    info = await storage.get_object_info(f"{NOTE_ID}-zip", "arc-1.zip")
    assert info.content_type == "application/zip"

    stream = await storage.get_object_stream(f"{NOTE_ID}-zip", "arc-1.zip")
    try:
        with zipfile.ZipFile(io.BytesIO(stream.read())) as zf:
            # Entries are written in name order.
            assert zf.namelist() == ["a.png", "b.png"]
    finally:
        stream.close()


@pytest.mark.anyio
async def test_worker_rerun_overwrites_same_archive_key(tmp_path: Path):
    worker, storage, _ = _make_worker(tmp_path)
    await _seed(storage, {"a.png": b"a" * 10})
    request = ArchiveRequest(note_id=NOTE_ID, archive_id="arc.zip")

    assert await worker.process_request(request) == ArchiveOutcome.UPLOADED
    await _seed(storage, {"c.png": b"c" * 5})
    assert await worker.process_request(request) == ArchiveOutcome.UPLOADED

    assert set(await _read_archive(storage, "arc.zip")) == {"a.png", "c.png"}
    assert [o.name async for o in storage.list_objects(f"{NOTE_ID}-zip")] == ["arc.zip"]


@pytest.mark.anyio
async def test_worker_skips_soft_deleted_attachments(tmp_path: Path):
    storage = LocalObjectStorage(root_dir=str(tmp_path / "blobs"), soft_delete=True)
    worker, _, _ = _make_worker(tmp_path, storage)
    await _seed(storage, {"a.png": b"a", "gone.png": b"g"})
    assert await storage.delete_object_if_exists(str(NOTE_ID), "gone.png")

    assert (
        await worker.process_request(ArchiveRequest(note_id=NOTE_ID, archive_id="x.zip"))
        == ArchiveOutcome.UPLOADED
    )
    assert set(await _read_archive(storage, "x.zip")) == {"a.png"}


@pytest.mark.anyio
async def test_worker_skips_missing_note_or_container(tmp_path: Path):
    worker, storage, _ = _make_worker(tmp_path, note_exists=_existing())
    await _seed(storage, {"a.png": b"a"})

    request = ArchiveRequest(note_id=NOTE_ID, archive_id="x.zip")
    assert await worker.process_request(request) == ArchiveOutcome.SKIPPED
    assert not await storage.container_exists(f"{NOTE_ID}-zip")

    other = uuid.uuid4()
    worker2, storage2, _ = _make_worker(tmp_path / "w2", note_exists=_existing(other))
    outcome = await worker2.process_request(ArchiveRequest(note_id=other, archive_id="x.zip"))
    assert outcome == ArchiveOutcome.SKIPPED
    assert not await storage2.container_exists(f"{other}-zip")


@pytest.mark.anyio
async def test_worker_drops_malformed_message(tmp_path: Path):
    worker, _, queue = _make_worker(tmp_path)

    message = QueueMessage(body=json.dumps({"noteId": "nope"}), receipt="bad")
    assert await worker.handle_message(message) == ArchiveOutcome.DROPPED
    assert queue.acked == ["bad"]


@pytest.mark.anyio
async def test_worker_failure_mid_build_uploads_nothing(tmp_path: Path):
    storage = _FlakyStorage(root_dir=str(tmp_path / "blobs"), fail_on="b.png")
    worker, _, queue = _make_worker(tmp_path, storage)
    await _seed(storage, {"a.png": b"a", "b.png": b"b", "c.png": b"c"})
    storage.puts.clear()

    outcome = await worker.handle_message(_message("arc.zip"))

    assert outcome == ArchiveOutcome.FAILED
    assert storage.puts == []
    assert not await storage.container_exists(f"{NOTE_ID}-zip")
    # Released with a delay instead of acknowledged, so the queue redelivers it.
    assert queue.acked == []
    assert queue.released == [("r1", 5)]


@pytest.mark.anyio
async def test_worker_drops_poison_message_after_max_deliveries(tmp_path: Path):
    storage = _FlakyStorage(root_dir=str(tmp_path / "blobs"), fail_on="a.png")
    worker, _, queue = _make_worker(tmp_path, storage, max_receive_count=3)
    await _seed(storage, {"a.png": b"a"})

    assert await worker.handle_message(_message("arc.zip", receive_count=2)) == ArchiveOutcome.FAILED
    assert queue.acked == []
    outcome = await worker.handle_message(_message("arc.zip", receive_count=3, receipt="r3"))
    assert outcome == ArchiveOutcome.DROPPED
    assert queue.acked == ["r3"]


@pytest.mark.anyio
async def test_worker_times_out_slow_builds(tmp_path: Path):
    storage = _FlakyStorage(root_dir=str(tmp_path / "blobs"), stall_on="a.png")
    worker, _, queue = _make_worker(tmp_path, storage, timeout_seconds=0.05)
    await _seed(storage, {"a.png": b"a"})
    storage.puts.clear()

    assert await worker.handle_message(_message("arc.zip")) == ArchiveOutcome.FAILED
    assert storage.puts == []
    assert queue.acked == []


@pytest.mark.anyio
async def test_worker_concurrent_requests_produce_distinct_archives(tmp_path: Path):
    worker, storage, queue = _make_worker(tmp_path, concurrency=4)
    await _seed(storage, {"a.png": b"a" * 10, "b.png": b"b" * 20})
    await queue.ensure_exists()
    for i in range(4):
        await enqueue_archive_request(queue, ArchiveRequest(note_id=NOTE_ID, archive_id=f"arc-{i}.zip"))

    outcomes = await worker.run_once()

    assert sorted(outcomes) == [ArchiveOutcome.UPLOADED] * 4
    assert len(queue.acked) == 4
    names = [o.name async for o in storage.list_objects(f"{NOTE_ID}-zip")]
    assert names == [f"arc-{i}.zip" for i in range(4)]
    for name in names:
        assert set(await _read_archive(storage, name)) == {"a.png", "b.png"}
    assert await queue.pending_count() == 0


@pytest.mark.anyio
async def test_run_forever_stops_when_event_is_set(tmp_path: Path):
    worker, storage, queue = _make_worker(tmp_path)
    await _seed(storage, {"a.png": b"a"})
    await queue.ensure_exists()
    await enqueue_archive_request(queue, ArchiveRequest(note_id=NOTE_ID, archive_id="bg.zip"))

    stop = anyio.Event()
    with anyio.fail_after(5):
        async with anyio.create_task_group() as tg:
            tg.start_soon(worker.run_forever, stop)
            while not await storage.container_exists(f"{NOTE_ID}-zip"):
                await anyio.sleep(0.01)
            stop.set()

    assert set(await _read_archive(storage, "bg.zip")) == {"a.png"}


class _BlockingStream:
    """Stream whose read blocks its thread, like a stalled object-store socket."""

    def __init__(self, seconds: float) -> None:
        self._seconds = seconds
        self.closed = False

    def read(self, size: int = -1) -> bytes:
        _ = size
        time.sleep(self._seconds)
        return b"late"

    def close(self) -> None:
        self.closed = True


class _StalledReadStorage(_FlakyStorage):
    async def get_object_stream(self, container: str, key: str) -> BinaryIO:
        _ = container, key
        return _BlockingStream(1.5)  # type: ignore[return-value]


@pytest.mark.anyio
async def test_worker_timeout_interrupts_blocking_reads(tmp_path: Path):
    storage = _StalledReadStorage(root_dir=str(tmp_path / "blobs"))
    worker, _, queue = _make_worker(tmp_path, storage, timeout_seconds=0.1)
    await _seed(storage, {"a.png": b"a"})
    storage.puts.clear()

    started = time.monotonic()
    outcome = await worker.handle_message(_message("arc.zip"))
    elapsed = time.monotonic() - started

    assert outcome == ArchiveOutcome.FAILED
    assert elapsed < 1.0
    assert storage.puts == []
    assert queue.acked == []


@pytest.mark.anyio
async def test_failed_build_is_released_and_retried(tmp_path: Path):
    storage = _FlakyStorage(root_dir=str(tmp_path / "blobs"), fail_on="a.png")
    worker, _, queue = _make_worker(tmp_path, storage, retry_delay_seconds=0)
    await _seed(storage, {"a.png": b"a"})
    await queue.ensure_exists()
    await enqueue_archive_request(queue, ArchiveRequest(note_id=NOTE_ID, archive_id="retry.zip"))

    assert await worker.run_once() == [ArchiveOutcome.FAILED]
    # Visible again right away, without waiting for the visibility timeout.
    assert await queue.pending_count() == 1

    storage.fail_on = ""
    assert await worker.run_once() == [ArchiveOutcome.UPLOADED]
    assert set(await _read_archive(storage, "retry.zip")) == {"a.png"}


@pytest.mark.anyio
async def test_failed_build_release_honours_retry_delay(tmp_path: Path):
    storage = _FlakyStorage(root_dir=str(tmp_path / "blobs"), fail_on="a.png")
    worker, _, queue = _make_worker(tmp_path, storage, retry_delay_seconds=30)
    await _seed(storage, {"a.png": b"a"})
    await queue.ensure_exists()
    await enqueue_archive_request(queue, ArchiveRequest(note_id=NOTE_ID, archive_id="later.zip"))

    assert await worker.run_once() == [ArchiveOutcome.FAILED]
    assert [delay for _, delay in queue.released] == [30]
    assert await queue.pending_count() == 0
    assert await queue.receive(max_messages=1, wait_seconds=0) == []


class _DeletesAfterListing(LocalObjectStorage):
    """Removes one attachment between the snapshot listing and its read."""

    def __init__(self, *, root_dir: str, victim: str) -> None:
        super().__init__(root_dir=root_dir)
        self.victim = victim

    async def get_object_stream(self, container: str, key: str) -> BinaryIO:
        if key == self.victim:
            _ = await self.delete_object_if_exists(container, key)
            self.victim = ""
        return await super().get_object_stream(container, key)


@pytest.mark.anyio
async def test_attachment_deleted_after_listing_fails_then_rebuilds_without_it(tmp_path: Path):
    storage = _DeletesAfterListing(root_dir=str(tmp_path / "blobs"), victim="b.png")
    worker, _, queue = _make_worker(tmp_path, storage)
    await _seed(storage, {"a.png": b"a", "b.png": b"b", "c.png": b"c"})

    assert await worker.handle_message(_message("snap.zip")) == ArchiveOutcome.FAILED
    assert not await storage.container_exists(f"{NOTE_ID}-zip")
    assert queue.acked == []

    # The redelivery lists the note again and archives what is left.
    outcome = await worker.handle_message(_message("snap.zip", receive_count=2, receipt="r2"))
    assert outcome == ArchiveOutcome.UPLOADED
    assert await _read_archive(storage, "snap.zip") == {"a.png": b"a", "c.png": b"c"}


@pytest.mark.anyio
async def test_note_deleted_during_build_leaves_no_archive_container(tmp_path: Path):
    answers = iter([True, False])

    async def _deleted_mid_build(note_id: UUID) -> bool:
        _ = note_id
        return next(answers)

    worker, storage, queue = _make_worker(tmp_path, note_exists=_deleted_mid_build)
    await _seed(storage, {"a.png": b"a"})

    assert await worker.handle_message(_message("gone.zip")) == ArchiveOutcome.SKIPPED
    assert not await storage.container_exists(f"{NOTE_ID}-zip")
    assert queue.acked == ["r1"]
