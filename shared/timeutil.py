from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def parse_iso(s: Optional[str]) -> Optional[datetime]:
    """Parse ISO-8601 ('...Z', '+00:00' or a bare date); naive values are taken as UTC."""
    if not s:
        return None
    try:
        dt = datetime.fromisoformat(s.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def to_ms(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def iso_to_local_str(ts: Optional[str], fmt: str = "%Y-%m-%d %H:%M") -> str:
    """
    Convert ISO-8601 UTC ('...Z' or '+00:00') to local time string.
    Returns '—' if ts is falsy or invalid.
    """
    dt = parse_iso(ts)
    if dt is None:
        return "—"
    return dt.astimezone().strftime(fmt)


def ms_to_local_str(ms: Optional[int], fmt: str = "%Y-%m-%d %H:%M") -> str:
    if not ms:
        return "—"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).astimezone().strftime(fmt)
