from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from flow_notes.errors import AuthorizationError, TransientSyncError, ValidationRejectedError
from flow_notes.schemas_sync import (
    NoteCreateRequest,
    NotePatchRequest,
    SyncNoteIn,
    SyncPushRequest,
)
from flow_notes.sync_utils import ms_to_iso, parse_timestamp_ms

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemoteNote:
    remote_id: str
    title: str
    content: str
    last_modified_ms: int
    owner_id: str | None = None
    # Echo of the idempotency token sent with a create, when the server supports it.
    client_id: str | None = None


@dataclass(frozen=True)
class RemoteConflict:
    remote_id: str | None
    reason: str
    server_note: RemoteNote | None = None


@dataclass(frozen=True)
class SyncPushResult:
    created: list[RemoteNote]
    updated: list[RemoteNote]
    conflicts: list[RemoteConflict]


@dataclass(frozen=True)
class PullResult:
    notes: list[RemoteNote]
    # Server clock at response time (Date header), if the server sent one.
    server_time_ms: int | None = None


@dataclass(frozen=True)
class OutgoingNote:
    remote_id: str | None
    client_id: str | None
    title: str
    content: str
    last_modified_ms: int


class NotesRemoteAPI(Protocol):
    def set_bearer_token(self, token: str) -> None: ...

    async def create_note(
        self, *, title: str, content: str, last_modified_ms: int, client_id: str | None = None
    ) -> RemoteNote: ...

    async def update_note(
        self,
        *,
        remote_id: str,
        title: str | None = None,
        content: str | None = None,
        last_modified_ms: int | None = None,
    ) -> RemoteNote: ...

    async def delete_note(self, *, remote_id: str) -> None: ...

    async def push_sync(self, notes: Sequence[OutgoingNote]) -> SyncPushResult: ...

    async def pull_changes_after(self, timestamp_ms: int) -> PullResult: ...

    async def ping(self) -> bool: ...


def _parse_remote_id(obj: dict[str, Any]) -> str | None:
    for key in ("_id", "id"):
        v = obj.get(key)
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        if isinstance(v, str) and v:
            return v
    return None


def _parse_note(obj: dict[str, Any]) -> RemoteNote:
    remote_id = _parse_remote_id(obj)
    if not remote_id:
        raise TransientSyncError(f"cannot parse note id: {obj}")

    last_modified_ms: int | None = None
    for key in ("lastModified", "updatedAt", "updated_at"):
        last_modified_ms = parse_timestamp_ms(obj.get(key))
        if last_modified_ms is not None:
            break

    title = obj.get("title")
    content = obj.get("content")
    owner = obj.get("userId")
    client_id = obj.get("clientId")
    return RemoteNote(
        remote_id=remote_id,
        title=title if isinstance(title, str) else str(title or ""),
        content=content if isinstance(content, str) else str(content or ""),
        last_modified_ms=last_modified_ms or 0,
        owner_id=str(owner) if owner is not None else None,
        client_id=client_id if isinstance(client_id, str) and client_id else None,
    )


def _parse_notes(items: Sequence[dict[str, Any]], what: str) -> list[RemoteNote]:
    notes: list[RemoteNote] = []
    for obj in items:
        try:
            notes.append(_parse_note(obj))
        except TransientSyncError as e:
            # One malformed record must not stall every later cycle.
            logger.warning("%s: skipping unparseable note: %s", what, e)
    return notes


def _parse_conflict(obj: dict[str, Any]) -> RemoteConflict:
    server_obj = obj.get("serverNote")
    server_note = _parse_note(server_obj) if isinstance(server_obj, dict) else None
    remote_id = _parse_remote_id(obj)
    if remote_id is None and server_note is not None:
        remote_id = server_note.remote_id
    return RemoteConflict(
        remote_id=remote_id,
        reason=str(obj.get("reason") or "conflict"),
        server_note=server_note,
    )


def _list_field(data: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = data.get(key)
    if not isinstance(value, list):
        return []
    return [x for x in value if isinstance(x, dict)]


def _extract_list(data: object) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return [x for x in data if isinstance(x, dict)]
    if isinstance(data, dict):
        for key in ("notes", "items", "data"):
            if isinstance(data.get(key), list):
                return _list_field(data, key)
    return []


def _parse_date_header(resp: httpx.Response) -> int | None:
    raw = resp.headers.get("date")
    if not raw:
        return None
    try:
        return int(parsedate_to_datetime(raw).timestamp() * 1000)
    except (TypeError, ValueError):
        return None


def _raise_for_status(resp: httpx.Response, what: str) -> None:
    status = resp.status_code
    if 200 <= status < 300:
        return
    detail = f"{what} failed. {status} {resp.text[:500]}"
    if status in (401, 403):
        raise AuthorizationError(detail)
    if status in (408, 425, 429) or status >= 500:
        raise TransientSyncError(detail)
    raise ValidationRejectedError(detail, status_code=status)


def _json(resp: httpx.Response, what: str) -> object:
    try:
        return resp.json()
    except ValueError as e:
        raise TransientSyncError(f"{what} returned invalid JSON: {e}") from e


class HttpxNotesRemoteAPI:
    def __init__(
        self,
        *,
        base_url: str,
        bearer_token: str,
        timeout_seconds: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = bearer_token.strip()
        self._timeout = timeout_seconds
        self._client = client

    def set_bearer_token(self, token: str) -> None:
        self._token = token.strip()

    def _headers(self) -> dict[str, str]:
        if not self._token:
            raise AuthorizationError("bearer token is empty")
        return {"Authorization": f"Bearer {self._token}"}

    async def _request(
        self, method: str, path: str, *, json: dict[str, Any] | None = None
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        headers = self._headers()
        try:
            if self._client is not None:
                return await self._client.request(
                    method, url, headers=headers, json=json, timeout=self._timeout
                )
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                return await client.request(method, url, headers=headers, json=json)
        except httpx.TimeoutException as e:
            raise TransientSyncError(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise TransientSyncError(f"{method} {path} unreachable: {e}") from e

    async def create_note(
        self, *, title: str, content: str, last_modified_ms: int, client_id: str | None = None
    ) -> RemoteNote:
        try:
            body = NoteCreateRequest(
                title=title,
                content=content,
                client_id=client_id,
                last_modified=ms_to_iso(last_modified_ms),
            )
        except ValidationError as e:
            raise ValidationRejectedError(f"invalid note: {e}", status_code=422) from e
        resp = await self._request(
            "POST", "/notes", json=body.model_dump(by_alias=True, exclude_none=True)
        )
        _raise_for_status(resp, "create note")
        data = _json(resp, "create note")
        if not isinstance(data, dict):
            raise TransientSyncError(f"create note succeeded but bad response: {data}")
        return _parse_note(data)

    async def update_note(
        self,
        *,
        remote_id: str,
        title: str | None = None,
        content: str | None = None,
        last_modified_ms: int | None = None,
    ) -> RemoteNote:
        try:
            body = NotePatchRequest(
                title=title,
                content=content,
                last_modified=ms_to_iso(last_modified_ms) if last_modified_ms is not None else None,
            )
        except ValidationError as e:
            raise ValidationRejectedError(f"invalid note patch: {e}", status_code=422) from e
        resp = await self._request(
            "PATCH",
            f"/notes/{quote(remote_id, safe='')}",
            json=body.model_dump(by_alias=True, exclude_none=True),
        )
        _raise_for_status(resp, "update note")
        data = _json(resp, "update note")
        if not isinstance(data, dict):
            raise TransientSyncError(f"update note succeeded but bad response: {data}")
        return _parse_note(data)

    async def delete_note(self, *, remote_id: str) -> None:
        resp = await self._request("DELETE", f"/notes/{quote(remote_id, safe='')}")
        if resp.status_code == 404:
            # Already gone on the server.
            logger.info("delete note remote_id=%s: already absent", remote_id)
            return
        _raise_for_status(resp, "delete note")

    async def push_sync(self, notes: Sequence[OutgoingNote]) -> SyncPushResult:
        body = SyncPushRequest(
            notes=[
                SyncNoteIn(
                    id=n.remote_id,
                    client_id=n.client_id,
                    title=n.title,
                    content=n.content,
                    last_modified=ms_to_iso(n.last_modified_ms),
                )
                for n in notes
            ]
        )
        resp = await self._request(
            "POST", "/notes/sync", json=body.model_dump(by_alias=True, exclude_none=True)
        )
        _raise_for_status(resp, "sync push")
        data = _json(resp, "sync push")
        if not isinstance(data, dict):
            raise TransientSyncError(f"sync push succeeded but bad response: {data}")
        return SyncPushResult(
            created=_parse_notes(_list_field(data, "created"), "sync push"),
            updated=_parse_notes(_list_field(data, "updated"), "sync push"),
            conflicts=[_parse_conflict(x) for x in _list_field(data, "conflicts")],
        )

    async def pull_changes_after(self, timestamp_ms: int) -> PullResult:
        stamp = quote(ms_to_iso(max(timestamp_ms, 0)), safe="")
        resp = await self._request("GET", f"/notes/sync/after/{stamp}")
        _raise_for_status(resp, "sync pull")
        items = _extract_list(_json(resp, "sync pull"))
        return PullResult(
            notes=_parse_notes(items, "sync pull"),
            server_time_ms=_parse_date_header(resp),
        )

    async def ping(self) -> bool:
        """True if the remote store answers at all (any HTTP status)."""
        url = f"{self._base_url}/health"
        try:
            if self._client is not None:
                await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    await client.get(url)
        except httpx.TransportError:
            return False
        return True
