from __future__ import annotations

from datetime import datetime, timezone


def now_ms() -> int:
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def ms_to_iso(value_ms: int) -> str:
    """Epoch milliseconds -> `2025-01-01T00:00:00.000Z` (the JSON Date shape)."""
    dt = datetime.fromtimestamp(value_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def parse_iso_to_ms(value: str) -> int | None:
    try:
        # Allow trailing Z.
        v = value.strip().replace("Z", "+00:00")
        dt = datetime.fromisoformat(v)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return int(dt.timestamp() * 1000)
    except (AttributeError, ValueError):
        return None


def parse_timestamp_ms(value: object) -> int | None:
    """Accept ISO-8601 strings or epoch milliseconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        if value.strip().isdigit():
            return int(value.strip())
        return parse_iso_to_ms(value)
    return None


def clamp_client_ms(value: int | None, *, max_skew_seconds: int) -> int:
    """Bound a client timestamp to at most `max_skew_seconds` ahead of this clock."""
    if not value or value < 0:
        return 0
    local_now = now_ms()
    max_ahead = max_skew_seconds * 1000
    if value > local_now + max_ahead:
        return local_now + max_ahead
    return value
