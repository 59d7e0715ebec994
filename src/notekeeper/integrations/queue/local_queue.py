from __future__ import annotations

import json
import logging
import os
import time
import uuid
from pathlib import Path

import anyio
from starlette.concurrency import run_in_threadpool

from .archive_queue import QueueError, QueueMessage

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 0.2


def _now_ms() -> int:
    return int(time.time() * 1000)


class LocalArchiveQueue:
    """Directory-backed queue shared by processes on one host.

    ``{root}/{queue}/ready/{enqueued_ms}-{id}`` holds visible messages.
    A receive claims one with an atomic rename to
    ``{root}/{queue}/inflight/{deadline_ms}~{ready name}``; the receipt is that
    file name. Claims past their deadline are moved back to ``ready/``.
    Envelopes that cannot be decoded are parked in ``{root}/{queue}/dead/``.
    """

    def __init__(
        self, *, root_dir: str, queue_name: str, visibility_timeout_seconds: int = 120
    ) -> None:
        self._base = Path(root_dir) / queue_name
        self._ready = self._base / "ready"
        self._inflight = self._base / "inflight"
        self._dead = self._base / "dead"
        self._visibility_ms = max(0, int(visibility_timeout_seconds)) * 1000

    async def ensure_exists(self) -> None:
        def _create() -> None:
            self._ready.mkdir(parents=True, exist_ok=True)
            self._inflight.mkdir(parents=True, exist_ok=True)

        try:
            await run_in_threadpool(_create)
        except OSError as exc:
            raise QueueError("failed to create local queue") from exc

    def _write_atomic(self, target: Path, envelope: dict[str, object]) -> None:
        tmp = self._base / f".tmp-{uuid.uuid4().hex}"
        _ = tmp.write_text(json.dumps(envelope), encoding="utf-8")
        _ = tmp.replace(target)

    async def send(self, body: str) -> None:
        name = f"{_now_ms():013d}-{uuid.uuid4().hex}"

        def _write() -> None:
            if not self._ready.is_dir():
                raise QueueError(f"queue does not exist: {self._base}")
            self._write_atomic(self._ready / name, {"body": body, "receive_count": 0})

        try:
            await run_in_threadpool(_write)
        except OSError as exc:
            raise QueueError("failed to enqueue message") from exc

    def _requeue_expired(self, now: int) -> None:
        for path in self._inflight.iterdir():
            deadline, _, ready_name = path.name.partition("~")
            if not ready_name or not deadline.isdigit() or int(deadline) > now:
                continue
            try:
                os.replace(path, self._ready / ready_name)
            except FileNotFoundError:
                # Acked or requeued by another consumer.
                continue

    def _bury(self, path: Path, ready_name: str, error: ValueError) -> None:
        self._dead.mkdir(exist_ok=True)
        try:
            os.replace(path, self._dead / ready_name)
        except FileNotFoundError:
            return
        logger.warning(
            "moved undecodable queue envelope to dead letters queue=%s name=%s error=%s",
            self._base.name,
            ready_name,
            error,
        )

    def _claim(self, max_messages: int) -> list[QueueMessage]:
        if not self._ready.is_dir():
            return []
        now = _now_ms()
        self._requeue_expired(now)

        claimed: list[QueueMessage] = []
        for path in sorted(self._ready.iterdir()):
            if len(claimed) >= max_messages:
                break
            receipt = f"{now + self._visibility_ms:013d}~{path.name}"
            target = self._inflight / receipt
            try:
                os.rename(path, target)
            except FileNotFoundError:
                # Claimed by another consumer.
                continue
            try:
                envelope = json.loads(target.read_text(encoding="utf-8"))
                if not isinstance(envelope, dict):
                    raise ValueError("envelope is not a JSON object")
                receive_count = int(envelope.get("receive_count") or 0) + 1
            except ValueError as exc:
                self._bury(target, path.name, exc)
                continue
            envelope["receive_count"] = receive_count
            self._write_atomic(target, envelope)
            claimed.append(
                QueueMessage(
                    body=str(envelope.get("body") or ""),
                    receipt=receipt,
                    receive_count=receive_count,
                )
            )
        return claimed

    async def receive(self, *, max_messages: int, wait_seconds: float) -> list[QueueMessage]:
        deadline = time.monotonic() + max(0.0, wait_seconds)
        while True:
            try:
                messages = await run_in_threadpool(self._claim, max(1, max_messages))
            except OSError as exc:
                raise QueueError("failed to receive messages") from exc
            if messages or time.monotonic() >= deadline:
                return messages
            await anyio.sleep(_POLL_INTERVAL_SECONDS)

    async def ack(self, message: QueueMessage) -> None:
        path = self._inflight / message.receipt
        try:
            await run_in_threadpool(path.unlink, missing_ok=True)
        except OSError as exc:
            raise QueueError("failed to ack message") from exc

    async def release(self, message: QueueMessage, *, delay_seconds: int = 0) -> None:
        _, _, ready_name = message.receipt.partition("~")
        source = self._inflight / message.receipt
        if delay_seconds > 0:
            # Stays claimed with a new deadline; _requeue_expired brings it back.
            target = self._inflight / f"{_now_ms() + int(delay_seconds) * 1000:013d}~{ready_name}"
        else:
            target = self._ready / ready_name

        def _release() -> None:
            if not ready_name:
                return
            try:
                os.replace(source, target)
            except FileNotFoundError:
                pass

        try:
            await run_in_threadpool(_release)
        except OSError as exc:
            raise QueueError("failed to release message") from exc

    async def pending_count(self) -> int:
        def _count() -> int:
            if not self._ready.is_dir():
                return 0
            return sum(1 for _ in self._ready.iterdir())

        return await run_in_threadpool(_count)
