from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from flow_notes.config import settings
from flow_notes.db import dispose_engines, init_db, session_scope
from flow_notes.errors import LocalStoreError, NoteNotFoundError
from flow_notes.integrations.notes_remote_api import HttpxNotesRemoteAPI
from flow_notes.repositories import sync_state_repo
from flow_notes.services import notes_service
from flow_notes.services.connectivity import ConnectivityObserver
from flow_notes.services.sync_coordinator import SyncCoordinator, SyncCycleReport
from flow_notes.sync_utils import ms_to_iso

logger = logging.getLogger("flow_notes")


async def _credential() -> tuple[str, str | None]:
    """(token, owner_id): the cached user wins over REMOTE_TOKEN."""
    async with session_scope() as session:
        user = await sync_state_repo.get_cached_user(session)
    if user is not None and user.token:
        return user.token, user.user_id
    return settings.remote_token.strip(), None


def _make_remote(token: str) -> HttpxNotesRemoteAPI:
    return HttpxNotesRemoteAPI(
        base_url=settings.remote_api_base(),
        bearer_token=token,
        timeout_seconds=settings.remote_request_timeout_seconds,
    )


def _print_report(report: SyncCycleReport) -> None:
    if report.skipped:
        print("sync skipped (offline or not logged in)")
        return
    r = report.reconcile
    print(
        f"sync {'ok' if report.ok else 'failed'}: deleted={report.deleted_remote} "
        f"pushed={report.pushed} pulled={report.pulled} inserted={r.inserted} "
        f"updated={r.updated} adopted={r.adopted} kept_local={r.kept_local} "
        f"server_wins={r.server_wins}"
    )
    for rejection in report.rejections:
        print(f"  rejected {rejection.remote_id or '-'}: {rejection.reason}")
    if report.error:
        print(f"  error: {report.error}")


async def _cmd_login(args: argparse.Namespace) -> int:
    async with session_scope() as session:
        await sync_state_repo.save_cached_user(
            session, user_id=args.user_id, username=args.username, token=args.token
        )
        await session.commit()
    print(f"logged in as {args.username or args.user_id}")
    return 0


async def _cmd_new(args: argparse.Namespace) -> int:
    _token, owner_id = await _credential()
    async with session_scope() as session:
        note = await notes_service.create_note(
            session=session, title=args.title, content=args.content, owner_id=owner_id
        )
    print(note.local_id)
    return 0


async def _cmd_edit(args: argparse.Namespace) -> int:
    async with session_scope() as session:
        note = await notes_service.update_note(
            session=session, local_id=args.local_id, title=args.title, content=args.content
        )
    print(f"{note.local_id} updated")
    return 0


async def _cmd_rm(args: argparse.Namespace) -> int:
    async with session_scope() as session:
        await notes_service.delete_note(session=session, local_id=args.local_id)
    print(f"{args.local_id} deleted")
    return 0


async def _cmd_ls(_args: argparse.Namespace) -> int:
    async with session_scope() as session:
        notes = await notes_service.list_notes(session=session)
    for note in notes:
        state = "synced" if note.synced else "pending"
        print(
            f"{note.local_id}  {state:7}  {note.remote_id or '-':32}  "
            f"{ms_to_iso(note.last_modified_ms)}  {note.title}"
        )
    return 0


async def _cmd_status(_args: argparse.Namespace) -> int:
    async with session_scope() as session:
        pending = await notes_service.pending_count(session=session)
        watermark = await sync_state_repo.get_watermark_ms(session)
        user = await sync_state_repo.get_cached_user(session)
    print(f"remote: {settings.remote_api_base()}")
    print(f"user: {user.username or user.user_id if user is not None else '-'}")
    print(f"pending mutations: {pending}")
    print(f"pull watermark: {ms_to_iso(watermark) if watermark else '-'}")
    return 0


async def _cmd_sync(_args: argparse.Namespace) -> int:
    token, owner_id = await _credential()
    if not token:
        print("not logged in: run `flow-notes login` or set REMOTE_TOKEN", file=sys.stderr)
        return 2
    remote = _make_remote(token)
    coordinator = SyncCoordinator(remote, online=await remote.ping(), owner_id=owner_id)
    try:
        report = await coordinator.trigger("manual")
    finally:
        await coordinator.close()
    _print_report(report)
    return 0 if report.ok else 1


async def _cmd_watch(_args: argparse.Namespace) -> int:
    """Keep syncing: initial + periodic cycles, reacting to connectivity changes."""
    token, owner_id = await _credential()
    if not token:
        print("not logged in: run `flow-notes login` or set REMOTE_TOKEN", file=sys.stderr)
        return 2
    remote = _make_remote(token)
    coordinator = SyncCoordinator(remote, online=await remote.ping(), owner_id=owner_id)
    observer = ConnectivityObserver(coordinator)
    coordinator.start()
    observer.watch(remote.ping)
    try:
        await asyncio.Event().wait()
    finally:
        await observer.close()
        await coordinator.close()
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    from flow_notes.server.app import create_app

    uvicorn.run(
        create_app(),
        host=args.host,
        port=args.port,
        log_level=settings.log_level.lower(),
        # The app sets its own Date header.
        date_header=False,
    )
    return 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="flow-notes", description="Offline-first notes with sync.")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("login", help="cache the user credential used for sync")
    p.add_argument("user_id")
    p.add_argument("token")
    p.add_argument("--username", default=None)

    p = sub.add_parser("new", help="create a note")
    p.add_argument("title")
    p.add_argument("content", nargs="?", default="")

    p = sub.add_parser("edit", help="edit a note")
    p.add_argument("local_id")
    p.add_argument("--title", default=None)
    p.add_argument("--content", default=None)

    p = sub.add_parser("rm", help="delete a note")
    p.add_argument("local_id")

    sub.add_parser("ls", help="list local notes")
    sub.add_parser("status", help="show pending mutations and sync state")
    sub.add_parser("sync", help="run one sync cycle")
    sub.add_parser("watch", help="sync periodically and on reconnect until interrupted")

    p = sub.add_parser("serve", help="run the reference remote store")
    p.add_argument("--host", default=settings.server_host)
    p.add_argument("--port", type=int, default=settings.server_port)
    return parser


_COMMANDS = {
    "login": _cmd_login,
    "new": _cmd_new,
    "edit": _cmd_edit,
    "rm": _cmd_rm,
    "ls": _cmd_ls,
    "status": _cmd_status,
    "sync": _cmd_sync,
    "watch": _cmd_watch,
}


async def _run(args: argparse.Namespace) -> int:
    await init_db()
    try:
        return await _COMMANDS[args.command](args)
    finally:
        await dispose_engines()


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    for msg in settings.security_warnings():
        logger.warning("SECURITY WARNING: %s", msg)

    if args.command == "serve":
        return _cmd_serve(args)
    try:
        return asyncio.run(_run(args))
    except NoteNotFoundError as e:
        print(f"no such note: {e}", file=sys.stderr)
        return 1
    except LocalStoreError as e:
        print(f"local store error: {e}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
