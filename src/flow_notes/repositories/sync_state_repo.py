from __future__ import annotations

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from flow_notes.models import CachedUser, SyncStateRow, utc_now

PULL_WATERMARK_KEY = "pull_watermark_ms"


async def get_watermark_ms(session: AsyncSession) -> int:
    row = await session.get(SyncStateRow, PULL_WATERMARK_KEY)
    return int(row.value_ms) if row is not None else 0


async def set_watermark_ms(session: AsyncSession, value_ms: int) -> None:
    row = await session.get(SyncStateRow, PULL_WATERMARK_KEY)
    if row is None:
        row = SyncStateRow(key=PULL_WATERMARK_KEY, value_ms=value_ms)
    else:
        row.value_ms = value_ms
        row.updated_at = utc_now()
    session.add(row)
    await session.flush()


async def get_cached_user(session: AsyncSession) -> CachedUser | None:
    return (await session.exec(select(CachedUser))).first()


async def save_cached_user(
    session: AsyncSession, *, user_id: str, username: str | None, token: str | None
) -> CachedUser:
    # Singleton: a new login replaces whoever was cached before.
    for other in (await session.exec(select(CachedUser))).all():
        if other.user_id != user_id:
            await session.delete(other)

    user = await session.get(CachedUser, user_id)
    if user is None:
        user = CachedUser(user_id=user_id)
    user.username = username
    user.token = token
    user.updated_at = utc_now()
    session.add(user)
    await session.flush()
    return user
