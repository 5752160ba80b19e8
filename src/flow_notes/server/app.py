"""Reference remote store: the notes API the sync engine talks to."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from email.utils import formatdate

from fastapi import FastAPI, Request
from starlette.responses import Response

from flow_notes.config import settings
from flow_notes.server.error_handlers import register_error_handlers
from flow_notes.server.note_store import InMemoryNoteStore
from flow_notes.server.routers import notes as notes_router

logger = logging.getLogger(__name__)


def create_app(
    *, tokens: dict[str, str] | None = None, store: InMemoryNoteStore | None = None
) -> FastAPI:
    app = FastAPI(title=f"{settings.app_name} server")
    app.state.tokens = tokens if tokens is not None else settings.server_tokens_map()
    app.state.note_store = store if store is not None else InMemoryNoteStore()
    if not app.state.tokens:
        logger.warning("SERVER_TOKENS is empty; every request will be rejected with 401")

    @app.middleware("http")
    async def date_header_middleware(  # pyright: ignore[reportUnusedFunction]
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        response = await call_next(request)
        # Clients follow this clock for their pull watermark.
        response.headers["Date"] = formatdate(usegmt=True)
        return response

    register_error_handlers(app)
    app.include_router(notes_router.router, prefix=settings.remote_api_prefix)
    return app
