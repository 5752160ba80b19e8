from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from flow_notes.server.note_store import InMemoryNoteStore

_bearer = HTTPBearer(auto_error=False)


def get_note_store(request: Request) -> InMemoryNoteStore:
    return request.app.state.note_store


async def get_current_user_id(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> str:
    raw_token = creds.credentials if creds is not None else None
    if not raw_token or not raw_token.strip():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing token")

    tokens: dict[str, str] = request.app.state.tokens
    user_id = tokens.get(raw_token.strip())
    if user_id is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid token")
    return user_id
