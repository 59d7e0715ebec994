"""Unified error responses.

Every endpoint answers errors with ``{error, message, request_id, details}``
instead of FastAPI's default ``{"detail": ...}``.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from notekeeper.integrations.queue.archive_queue import QueueError
from notekeeper.integrations.storage.object_storage import StorageError
from notekeeper.schemas import ErrorResponse

logger = logging.getLogger(__name__)


def _map_http_status_to_error(status_code: int) -> str:
    mapping: dict[int, str] = {
        400: "bad_request",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
        413: "payload_too_large",
        422: "validation_error",
        503: "service_unavailable",
    }
    return mapping.get(status_code, f"http_{status_code}")


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


async def _http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)

    details: object | None = None
    message = str(http_exc.detail)
    if isinstance(http_exc.detail, dict):
        # Convention: {'message': str, 'details': object}
        msg = http_exc.detail.get("message")
        if isinstance(msg, str):
            message = msg
            details = http_exc.detail.get("details")
        else:
            details = http_exc.detail
    elif isinstance(http_exc.detail, list):
        details = http_exc.detail

    payload = ErrorResponse(
        error=_map_http_status_to_error(http_exc.status_code),
        message=message,
        request_id=_request_id(request),
        details=details,
    )
    return JSONResponse(
        status_code=http_exc.status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=getattr(http_exc, "headers", None),
    )


async def _validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    validation_exc = cast(RequestValidationError, exc)
    payload = ErrorResponse(
        error="validation_error",
        message="Request validation error",
        request_id=_request_id(request),
        details=validation_exc.errors(),
    )
    return JSONResponse(status_code=422, content=jsonable_encoder(payload, exclude_none=True))


async def _backend_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    # Object store / queue I/O failures are transient from the client's point of view.
    request_id = _request_id(request)
    logger.warning(
        "backend unavailable request_id=%s method=%s path=%s error=%r",
        request_id,
        request.method,
        request.url.path,
        exc,
    )
    payload = ErrorResponse(
        error="service_unavailable",
        message="Storage backend unavailable, retry later",
        request_id=request_id,
    )
    return JSONResponse(status_code=503, content=jsonable_encoder(payload, exclude_none=True))


async def _unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    request_id = _request_id(request)
    logger.exception(
        "unhandled exception request_id=%s method=%s path=%s",
        request_id,
        request.method,
        request.url.path,
        exc_info=exc,
    )
    payload = ErrorResponse(
        error="internal_error",
        message="Internal server error",
        request_id=request_id,
    )
    return JSONResponse(status_code=500, content=jsonable_encoder(payload, exclude_none=True))


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _validation_exception_handler)
    app.add_exception_handler(StorageError, _backend_unavailable_handler)
    app.add_exception_handler(QueueError, _backend_unavailable_handler)
    app.add_exception_handler(Exception, _unhandled_exception_handler)
