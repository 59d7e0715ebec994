from __future__ import annotations

from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, BinaryIO, cast

from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from notekeeper.models import utc_now

from .object_storage import (
    ContainerNotFoundError,
    ObjectInfo,
    ObjectNotFoundError,
    StorageError,
    validate_object_key,
)

# Empty object whose presence means "this container exists".
CONTAINER_MARKER = ".container"
_CREATED_AT_META = "created-at"
_NOT_FOUND_CODES = {"404", "NoSuchKey", "NotFound", "NoSuchVersion"}


def _is_not_found(exc: ClientError) -> bool:
    code = str(exc.response.get("Error", {}).get("Code", ""))
    return code in _NOT_FOUND_CODES


def _parse_created_at(metadata: dict[str, str]) -> datetime | None:
    raw = metadata.get(_CREATED_AT_META)
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        return None


@dataclass(frozen=True)
class S3Config:
    endpoint_url: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    force_path_style: bool


class S3ObjectStorage:
    """Containers as key prefixes (``{container}/{key}``) inside one bucket."""

    def __init__(
        self,
        *,
        endpoint_url: str,
        region: str,
        bucket: str,
        access_key_id: str,
        secret_access_key: str,
        force_path_style: bool,
    ) -> None:
        self._cfg = S3Config(
            endpoint_url=endpoint_url,
            region=region,
            bucket=bucket,
            access_key_id=access_key_id,
            secret_access_key=secret_access_key,
            force_path_style=force_path_style,
        )

        import boto3

        addressing_style = "path" if force_path_style else "virtual"
        self._client = boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region or None,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(s3={"addressing_style": addressing_style}),
        )

    def _key(self, container: str, key: str) -> str:
        return f"{validate_object_key(container)}/{validate_object_key(key)}"

    def _marker_key(self, container: str) -> str:
        return f"{validate_object_key(container)}/{CONTAINER_MARKER}"

    def _head(self, key: str) -> dict[str, Any] | None:
        try:
            return cast(dict[str, Any], self._client.head_object(Bucket=self._cfg.bucket, Key=key))
        except ClientError as exc:
            if _is_not_found(exc):
                return None
            raise

    async def _call(self, fn: Any, what: str) -> Any:
        try:
            return await run_in_threadpool(fn)
        except (ClientError, BotoCoreError) as exc:
            raise StorageError(f"s3 {what} failed") from exc

    async def container_exists(self, container: str) -> bool:
        marker = self._marker_key(container)
        return await self._call(lambda: self._head(marker) is not None, "head container")

    async def container_exists_or_create(self, container: str) -> None:
        marker = self._marker_key(container)

        def _create() -> None:
            # Racing creators both write the same empty marker; the outcome is identical.
            if self._head(marker) is None:
                self._client.put_object(Bucket=self._cfg.bucket, Key=marker, Body=b"")

        await self._call(_create, "create container")

    async def delete_container_if_exists(self, container: str) -> bool:
        prefix = f"{validate_object_key(container)}/"

        def _delete() -> bool:
            paginator = self._client.get_paginator("list_objects_v2")
            removed = False
            for page in paginator.paginate(Bucket=self._cfg.bucket, Prefix=prefix):
                contents = cast(list[dict[str, Any]], page.get("Contents") or [])
                if not contents:
                    continue
                self._client.delete_objects(
                    Bucket=self._cfg.bucket,
                    Delete={"Objects": [{"Key": c["Key"]} for c in contents], "Quiet": True},
                )
                removed = True
            return removed

        return await self._call(_delete, "delete container")

    def _list_page_infos(self, prefix: str, contents: list[dict[str, Any]]) -> list[ObjectInfo]:
        infos: list[ObjectInfo] = []
        for item in contents:
            key = cast(str, item["Key"])
            name = key[len(prefix) :]
            if not name or name == CONTAINER_MARKER or "/" in name:
                continue
            head = self._head(key) or {}
            metadata = cast(dict[str, str], head.get("Metadata") or {})
            infos.append(
                ObjectInfo(
                    name=name,
                    size=int(item.get("Size") or 0),
                    content_type=cast(str | None, head.get("ContentType")),
                    created_at=_parse_created_at(metadata),
                    last_modified=cast(datetime | None, item.get("LastModified")),
                )
            )
        return infos

    def _list_delete_markers(self, prefix: str) -> list[ObjectInfo]:
        paginator = self._client.get_paginator("list_object_versions")
        infos: list[ObjectInfo] = []
        for page in paginator.paginate(Bucket=self._cfg.bucket, Prefix=prefix):
            for marker in cast(list[dict[str, Any]], page.get("DeleteMarkers") or []):
                name = cast(str, marker["Key"])[len(prefix) :]
                if not marker.get("IsLatest") or not name or name == CONTAINER_MARKER:
                    continue
                infos.append(
                    ObjectInfo(
                        name=name,
                        size=0,
                        content_type=None,
                        created_at=None,
                        last_modified=cast(datetime | None, marker.get("LastModified")),
                        deleted=True,
                    )
                )
        return infos

    async def list_objects(
        self, container: str, *, include_deleted: bool = False
    ) -> AsyncIterator[ObjectInfo]:
        if not await self.container_exists(container):
            raise ContainerNotFoundError(container)

        prefix = f"{validate_object_key(container)}/"
        paginator = self._client.get_paginator("list_objects_v2")
        pages = iter(paginator.paginate(Bucket=self._cfg.bucket, Prefix=prefix))

        def _next_page() -> dict[str, Any] | None:
            return cast(dict[str, Any] | None, next(pages, None))

        # One page per threadpool hop keeps the listing lazy.
        while True:
            page = await self._call(_next_page, "list objects")
            if page is None:
                break
            contents = cast(list[dict[str, Any]], page.get("Contents") or [])
            infos = await self._call(
                lambda: self._list_page_infos(prefix, contents), "head objects"
            )
            for info in infos:
                yield info

        if include_deleted:
            for info in await self._call(
                lambda: self._list_delete_markers(prefix), "list versions"
            ):
                yield info

    async def get_object_info(self, container: str, key: str) -> ObjectInfo:
        full_key = self._key(container, key)
        head = await self._call(lambda: self._head(full_key), "head object")
        if head is None:
            raise ObjectNotFoundError(container, key)
        metadata = cast(dict[str, str], head.get("Metadata") or {})
        return ObjectInfo(
            name=key,
            size=int(head.get("ContentLength") or 0),
            content_type=cast(str | None, head.get("ContentType")),
            created_at=_parse_created_at(metadata),
            last_modified=cast(datetime | None, head.get("LastModified")),
        )

    async def get_object_stream(self, container: str, key: str) -> BinaryIO:
        full_key = self._key(container, key)

        def _get() -> BinaryIO | None:
            try:
                resp = self._client.get_object(Bucket=self._cfg.bucket, Key=full_key)
            except ClientError as exc:
                if _is_not_found(exc):
                    return None
                raise
            # StreamingBody: blocking read()/close(), file-like enough for zipfile/shutil.
            return cast(BinaryIO, resp["Body"])

        body = await self._call(_get, "get object")
        if body is None:
            raise ObjectNotFoundError(container, key)
        return body

    async def put_object(
        self, container: str, key: str, data: bytes, *, content_type: str | None = None
    ) -> None:
        full_key = self._key(container, key)
        marker = self._marker_key(container)

        def _put() -> None:
            if self._head(marker) is None:
                raise ContainerNotFoundError(container)
            existing = self._head(full_key)
            created_at = None
            if existing is not None:
                created_at = cast(dict[str, str], existing.get("Metadata") or {}).get(
                    _CREATED_AT_META
                )
            kwargs: dict[str, object] = {
                "Bucket": self._cfg.bucket,
                "Key": full_key,
                "Body": data,
                "Metadata": {_CREATED_AT_META: created_at or utc_now().isoformat()},
            }
            if content_type:
                kwargs["ContentType"] = content_type
            self._client.put_object(**kwargs)

        await self._call(_put, "put object")

    async def delete_object_if_exists(self, container: str, key: str) -> bool:
        full_key = self._key(container, key)

        def _delete() -> bool:
            if self._head(full_key) is None:
                return False
            self._client.delete_object(Bucket=self._cfg.bucket, Key=full_key)
            return True

        return await self._call(_delete, "delete object")
