from __future__ import annotations

import io
import zipfile
from typing import IO


class ZipArchiveBuilder:
    """In-memory ZIP writer; one entry per attachment, named by attachment id.

    Callers copy attachment bytes into the handle from ``open_entry`` chunk by
    chunk, so a slow source can be abandoned between chunks.
    """

    def __init__(self) -> None:
        self._buffer = io.BytesIO()
        self._zip = zipfile.ZipFile(self._buffer, mode="w", compression=zipfile.ZIP_DEFLATED)
        self._names: set[str] = set()
        self._closed = False

    @property
    def entry_names(self) -> list[str]:
        return [info.filename for info in self._zip.infolist()]

    def open_entry(self, name: str) -> IO[bytes]:
        if self._closed:
            raise ValueError("archive already finished")
        if name in self._names:
            raise ValueError(f"duplicate archive entry: {name}")
        self._names.add(name)
        return self._zip.open(name, mode="w", force_zip64=True)

    def getvalue(self) -> bytes:
        if not self._closed:
            self._zip.close()
            self._closed = True
        return self._buffer.getvalue()
