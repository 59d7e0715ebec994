"""Archive request queue contract.

Wire format (pinned, shared with every producer and worker):
UTF-8 JSON ``{"noteId": "<uuid>", "archiveId": "<string>"}``, base64-wrapped
when ``ARCHIVE_QUEUE_BASE64`` is on. Consumers accept both forms, ignore
unknown fields, and reject messages missing either key.
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from notekeeper.config import settings
from notekeeper.integrations.storage.object_storage import validate_object_key


class QueueError(Exception):
    """Queue transport I/O failed."""


class MalformedArchiveRequestError(ValueError):
    """Message can never be processed; acknowledge and drop it."""


class ArchiveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    note_id: UUID = Field(validation_alias=AliasChoices("noteId", "note_id"), serialization_alias="noteId")
    # "zipFileId" is what early producers sent.
    archive_id: str = Field(
        validation_alias=AliasChoices("archiveId", "zipFileId", "archive_id"),
        serialization_alias="archiveId",
    )

    @field_validator("archive_id")
    @classmethod
    def _archive_id_is_storage_key(cls, v: str) -> str:
        return validate_object_key(v)


@dataclass(frozen=True)
class QueueMessage:
    body: str
    # Transport handle used to ack/release this delivery.
    receipt: str
    receive_count: int = 1


class ArchiveQueue(Protocol):
    async def ensure_exists(self) -> None: ...

    async def send(self, body: str) -> None: ...

    async def receive(self, *, max_messages: int, wait_seconds: float) -> list[QueueMessage]: ...

    async def ack(self, message: QueueMessage) -> None: ...

    async def release(self, message: QueueMessage, *, delay_seconds: int = 0) -> None: ...


def encode_archive_request(request: ArchiveRequest, *, base64_wrap: bool | None = None) -> str:
    if base64_wrap is None:
        base64_wrap = settings.archive_queue_base64
    raw = json.dumps(request.model_dump(mode="json", by_alias=True), separators=(",", ":"))
    if not base64_wrap:
        return raw
    return base64.b64encode(raw.encode("utf-8")).decode("ascii")


def decode_archive_request(body: str | bytes) -> ArchiveRequest:
    try:
        text = body.decode("utf-8") if isinstance(body, bytes) else body
        text = text.strip()
        if not text.startswith("{"):
            text = base64.b64decode(text, validate=True).decode("utf-8")
        data = json.loads(text)
    except (UnicodeDecodeError, binascii.Error, ValueError) as exc:
        raise MalformedArchiveRequestError(f"undecodable archive request: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedArchiveRequestError("archive request must be a JSON object")
    try:
        return ArchiveRequest.model_validate(data)
    except ValidationError as exc:
        raise MalformedArchiveRequestError(f"invalid archive request: {exc}") from exc


async def enqueue_archive_request(queue: ArchiveQueue, request: ArchiveRequest) -> None:
    await queue.send(encode_archive_request(request))


@lru_cache(maxsize=1)
def _build_archive_queue(cache_key: tuple[object, ...]) -> ArchiveQueue:
    _ = cache_key
    if settings.sqs_configured():
        from .sqs_queue import SqsArchiveQueue

        return SqsArchiveQueue(
            queue_name=settings.archive_queue_name,
            queue_url=settings.sqs_queue_url,
            endpoint_url=settings.sqs_endpoint_url,
            region=settings.sqs_region,
            visibility_timeout_seconds=settings.archive_queue_visibility_timeout_seconds,
        )

    from .local_queue import LocalArchiveQueue

    return LocalArchiveQueue(
        root_dir=settings.archive_queue_local_dir,
        queue_name=settings.archive_queue_name,
        visibility_timeout_seconds=settings.archive_queue_visibility_timeout_seconds,
    )


def get_archive_queue() -> ArchiveQueue:
    return _build_archive_queue(
        (
            settings.sqs_queue_url,
            settings.sqs_endpoint_url,
            settings.sqs_region,
            settings.archive_queue_name,
            settings.archive_queue_local_dir,
            settings.archive_queue_visibility_timeout_seconds,
        )
    )
