"""Error envelope of the reference notes server.

Every failure answers `{error, message, details}`. Sync clients branch on the
status code; `error` is a stable name for logs, and a stale write carries the
stored note under `details.serverNote` so the client can adopt it.
"""

from __future__ import annotations

import logging
from typing import cast

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from flow_notes.schemas_sync import ErrorResponse, RemoteNoteOut

logger = logging.getLogger(__name__)

# Statuses the notes routes and bearer auth produce.
_ERROR_NAMES: dict[int, str] = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
    422: "validation_error",
    500: "internal_error",
}


class StaleNoteError(Exception):
    """A write older than the stored note."""

    def __init__(self, server_note: RemoteNoteOut) -> None:
        super().__init__("Server version is newer")
        self.server_note = server_note


def _envelope(
    status_code: int,
    message: str,
    *,
    details: object | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    payload = ErrorResponse(
        error=_ERROR_NAMES.get(status_code, f"http_{status_code}"),
        message=message,
        details=details,
    )
    return JSONResponse(
        status_code=status_code,
        content=jsonable_encoder(payload, exclude_none=True),
        headers=headers,
    )


async def _on_http_error(_request: Request, exc: Exception) -> JSONResponse:
    http_exc = cast(StarletteHTTPException, exc)
    return _envelope(http_exc.status_code, str(http_exc.detail), headers=http_exc.headers)


async def _on_stale_note(_request: Request, exc: Exception) -> JSONResponse:
    stale = cast(StaleNoteError, exc)
    return _envelope(
        409, str(stale), details={"serverNote": stale.server_note.model_dump(by_alias=True)}
    )


async def _on_invalid_body(_request: Request, exc: Exception) -> JSONResponse:
    errors = cast(RequestValidationError, exc).errors()
    return _envelope(422, "Request validation error", details=errors)


async def _on_crash(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        "notes server crashed method=%s path=%s", request.method, request.url.path, exc_info=exc
    )
    return _envelope(500, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StaleNoteError, _on_stale_note)
    app.add_exception_handler(StarletteHTTPException, _on_http_error)
    app.add_exception_handler(RequestValidationError, _on_invalid_body)
    app.add_exception_handler(Exception, _on_crash)
