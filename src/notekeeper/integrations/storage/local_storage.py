from __future__ import annotations

import json
import os
import shutil
import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO

from starlette.concurrency import run_in_threadpool

from notekeeper.models import utc_now

from .object_storage import (
    ContainerNotFoundError,
    ObjectInfo,
    ObjectNotFoundError,
    StorageError,
    validate_object_key,
)

_META_DIR = ".meta"
_DELETED_DIR = ".deleted"


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


class LocalObjectStorage:
    """Directory-per-container storage.

    Layout (pinned): ``{root}/{container}/{key}`` for objects,
    ``{root}/{container}/.meta/{key}.json`` for content type and creation time,
    and ``{root}/{container}/.deleted/{key}`` for soft-deleted objects.
    """

    def __init__(self, *, root_dir: str, soft_delete: bool = False) -> None:
        self._root = Path(root_dir)
        self._soft_delete = soft_delete

    def container_path(self, container: str) -> Path:
        return self._root / validate_object_key(container)

    def resolve_path(self, container: str, key: str) -> Path:
        return self.container_path(container) / validate_object_key(key)

    def _meta_path(self, container: str, key: str) -> Path:
        return self.container_path(container) / _META_DIR / f"{validate_object_key(key)}.json"

    def _read_meta(self, container: str, key: str) -> dict[str, str]:
        try:
            raw = self._meta_path(container, key).read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        try:
            data = json.loads(raw)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def _info(self, container: str, path: Path, *, deleted: bool) -> ObjectInfo:
        stat = path.stat()
        meta = self._read_meta(container, path.name)
        created_raw = meta.get("created_at")
        created_at = datetime.fromisoformat(created_raw) if created_raw else _mtime(path)
        return ObjectInfo(
            name=path.name,
            size=stat.st_size,
            content_type=meta.get("content_type") or None,
            created_at=created_at,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
            deleted=deleted,
        )

    async def container_exists(self, container: str) -> bool:
        path = self.container_path(container)
        return await run_in_threadpool(path.is_dir)

    async def container_exists_or_create(self, container: str) -> None:
        path = self.container_path(container)

        def _create() -> None:
            # exist_ok makes concurrent creators agree without coordination.
            path.mkdir(parents=True, exist_ok=True)

        try:
            await run_in_threadpool(_create)
        except OSError as exc:
            raise StorageError(f"failed to create container {container}") from exc

    async def delete_container_if_exists(self, container: str) -> bool:
        path = self.container_path(container)

        def _delete() -> bool:
            if not path.is_dir():
                return False
            shutil.rmtree(path, ignore_errors=False)
            return True

        try:
            return await run_in_threadpool(_delete)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"failed to delete container {container}") from exc

    async def list_objects(
        self, container: str, *, include_deleted: bool = False
    ) -> AsyncIterator[ObjectInfo]:
        root = self.container_path(container)

        def _scan() -> list[tuple[Path, bool]]:
            if not root.is_dir():
                raise ContainerNotFoundError(container)
            found = [(p, False) for p in root.iterdir() if not p.name.startswith(".")]
            deleted_dir = root / _DELETED_DIR
            if include_deleted and deleted_dir.is_dir():
                found.extend((p, True) for p in deleted_dir.iterdir())
            return sorted(found, key=lambda item: (item[0].name, item[1]))

        try:
            entries = await run_in_threadpool(_scan)
        except OSError as exc:
            raise StorageError(f"failed to list container {container}") from exc

        for path, deleted in entries:
            try:
                info = await run_in_threadpool(self._info, container, path, deleted=deleted)
            except FileNotFoundError:
                # Removed after the directory scan.
                continue
            except OSError as exc:
                raise StorageError(f"failed to stat {container}/{path.name}") from exc
            yield info

    async def get_object_info(self, container: str, key: str) -> ObjectInfo:
        path = self.resolve_path(container, key)
        try:
            return await run_in_threadpool(self._info, container, path, deleted=False)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(container, key) from exc

    async def get_object_stream(self, container: str, key: str) -> BinaryIO:
        path = self.resolve_path(container, key)

        def _open() -> BinaryIO:
            return path.open("rb")

        try:
            return await run_in_threadpool(_open)
        except FileNotFoundError as exc:
            raise ObjectNotFoundError(container, key) from exc
        except OSError as exc:
            raise StorageError(f"failed to open {container}/{key}") from exc

    async def put_object(
        self, container: str, key: str, data: bytes, *, content_type: str | None = None
    ) -> None:
        root = self.container_path(container)
        path = self.resolve_path(container, key)
        meta_path = self._meta_path(container, key)

        def _write() -> None:
            if not root.is_dir():
                raise ContainerNotFoundError(container)
            created_at = self._read_meta(container, key).get("created_at")
            if not created_at or not path.exists():
                created_at = utc_now().isoformat()

            # Unique temp name so concurrent writers of one key never share a file.
            tmp_path = root / f".tmp-{uuid.uuid4().hex}"
            _ = tmp_path.write_bytes(data)
            _ = tmp_path.replace(path)

            meta_path.parent.mkdir(exist_ok=True)
            meta_tmp = meta_path.with_name(f".tmp-{uuid.uuid4().hex}")
            _ = meta_tmp.write_text(
                json.dumps({"content_type": content_type or "", "created_at": created_at}),
                encoding="utf-8",
            )
            _ = meta_tmp.replace(meta_path)

        try:
            await run_in_threadpool(_write)
        except OSError as exc:
            raise StorageError(f"failed to write {container}/{key}") from exc

    async def delete_object_if_exists(self, container: str, key: str) -> bool:
        path = self.resolve_path(container, key)
        soft_delete = self._soft_delete

        def _delete() -> bool:
            if not path.exists():
                return False
            if soft_delete:
                trash = path.parent / _DELETED_DIR
                trash.mkdir(exist_ok=True)
                os.replace(path, trash / path.name)
            else:
                path.unlink()
                self._meta_path(container, key).unlink(missing_ok=True)
            return True

        try:
            return await run_in_threadpool(_delete)
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageError(f"failed to delete {container}/{key}") from exc
