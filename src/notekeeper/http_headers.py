from __future__ import annotations

from collections.abc import Iterator
from typing import BinaryIO
from urllib.parse import quote

from starlette.responses import StreamingResponse

_STREAM_CHUNK_BYTES = 64 * 1024


def sanitize_filename(filename: str | None, *, fallback: str = "download") -> str:
    # Keys are single segments already; strip anything header-hostile anyway.
    v = (filename or "").strip().split("/")[-1].split("\\")[-1]
    v = v.replace("\r", "").replace("\n", "").replace("\x00", "")
    return (v or fallback)[:150]


def build_content_disposition_attachment(filename: str) -> str:
    """``attachment`` disposition with an ASCII ``filename=`` and an RFC 5987 ``filename*=``."""
    name = sanitize_filename(filename)
    ascii_name = name.encode("ascii", errors="ignore").decode("ascii") or "download"
    ascii_name = ascii_name.replace('"', "'")
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(name, safe='')}"


def _iter_stream(stream: BinaryIO) -> Iterator[bytes]:
    try:
        while True:
            chunk = stream.read(_STREAM_CHUNK_BYTES)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


def stream_download_response(
    stream: BinaryIO, *, filename: str, media_type: str, length: int | None = None
) -> StreamingResponse:
    # Sync iterator: Starlette drives it from its threadpool.
    headers = {"Content-Disposition": build_content_disposition_attachment(filename)}
    if length is not None:
        headers["Content-Length"] = str(length)
    return StreamingResponse(_iter_stream(stream), media_type=media_type, headers=headers)
