from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from typing import BinaryIO, Protocol

from notekeeper.config import settings

ARCHIVE_CONTENT_TYPE = "application/zip"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


class StorageError(Exception):
    """Object store I/O failed; the operation may succeed when retried."""


class ObjectNotFoundError(StorageError):
    def __init__(self, container: str, key: str) -> None:
        super().__init__(f"object not found: {container}/{key}")
        self.container = container
        self.key = key


class ContainerNotFoundError(StorageError):
    def __init__(self, container: str) -> None:
        super().__init__(f"container not found: {container}")
        self.container = container


class InvalidStorageKeyError(ValueError):
    pass


@dataclass(frozen=True)
class ObjectInfo:
    name: str
    size: int
    content_type: str | None
    created_at: datetime | None
    last_modified: datetime | None
    deleted: bool = False


class ObjectStorage(Protocol):
    async def container_exists(self, container: str) -> bool: ...

    async def container_exists_or_create(self, container: str) -> None: ...

    async def delete_container_if_exists(self, container: str) -> bool: ...

    def list_objects(
        self, container: str, *, include_deleted: bool = False
    ) -> AsyncIterator[ObjectInfo]: ...

    async def get_object_info(self, container: str, key: str) -> ObjectInfo: ...

    async def get_object_stream(self, container: str, key: str) -> BinaryIO: ...

    async def put_object(
        self, container: str, key: str, data: bytes, *, content_type: str | None = None
    ) -> None: ...

    async def delete_object_if_exists(self, container: str, key: str) -> bool: ...


def validate_object_key(key: str) -> str:
    # Keys are a single path segment; dot-prefixed names are reserved for storage metadata.
    if not key or "/" in key or "\\" in key or key.startswith(".") or len(key) > 255:
        raise InvalidStorageKeyError(f"invalid storage key: {key!r}")
    return key


def attachment_container_name(note_id: object) -> str:
    return str(note_id)


def archive_container_name(note_id: object) -> str:
    return f"{note_id}-zip"


@lru_cache(maxsize=1)
def _build_object_storage(cache_key: tuple[object, ...]) -> ObjectStorage:
    _ = cache_key
    # Default to local storage when S3 config is incomplete.
    if settings.s3_configured():
        from .s3_storage import S3ObjectStorage

        return S3ObjectStorage(
            endpoint_url=settings.s3_endpoint_url,
            region=settings.s3_region,
            bucket=settings.s3_bucket,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
            force_path_style=settings.s3_force_path_style,
        )

    from .local_storage import LocalObjectStorage

    return LocalObjectStorage(
        root_dir=settings.attachments_local_dir,
        soft_delete=settings.storage_soft_delete,
    )


def get_object_storage() -> ObjectStorage:
    # One client per process and configuration; boto3 clients are thread-safe.
    return _build_object_storage(
        (
            settings.s3_endpoint_url,
            settings.s3_region,
            settings.s3_bucket,
            settings.s3_access_key_id,
            settings.s3_force_path_style,
            settings.attachments_local_dir,
            settings.storage_soft_delete,
        )
    )
