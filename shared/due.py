# shared/due.py
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional, Union

from shared.timeutil import iso_to_local_str, parse_iso

if TYPE_CHECKING:
    from shared.models import Submission

# Deadlines travel on the submission as ISO-8601 strings:
#   "2025-10-04"              date only, taken as 00:00 UTC
#   "2025-10-04T23:59:00Z"    explicit UTC
# A falsy value means "no deadline".

DateLike = Union[str, datetime]


def parse_deadline(value: Optional[DateLike]) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return parse_iso(value)


def normalise_deadline(value: Optional[DateLike]) -> Optional[str]:
    """Canonical storage form ('...Z'); raises ValueError on unparsable input."""
    if value is None or value == "":
        return None
    dt = parse_deadline(value)
    if dt is None:
        raise ValueError(f"Unrecognised deadline: {value!r}")
    return dt.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def is_overdue(value: Optional[DateLike], now: Optional[datetime] = None) -> bool:
    dt = parse_deadline(value)
    if not dt:
        return False
    now = now or datetime.now(timezone.utc)
    return now > dt


def deadline_label(value: Optional[str]) -> str:
    if not value:
        return ""
    return iso_to_local_str(value)


# ─────────────────────────────────────────────────────────────────────────────
# Calendar export
# ─────────────────────────────────────────────────────────────────────────────
def _ics_stamp(value: DateLike) -> str:
    dt = parse_deadline(value)
    if dt is None:
        raise ValueError(f"Unrecognised date: {value!r}")
    return dt.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def generate_ics(title: str, description: str, start: DateLike, end: DateLike) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "BEGIN:VEVENT",
        f"SUMMARY:{title}",
        f"DESCRIPTION:{description}",
        f"DTSTART:{_ics_stamp(start)}",
        f"DTEND:{_ics_stamp(end)}",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\n".join(lines)


def deadline_ics(submission: "Submission") -> Optional[str]:
    """ICS text for a submission's review deadline, or None when it has none."""
    if not submission.deadline:
        return None
    name = submission.filename or submission.owner or "Document"
    return generate_ics(
        title=f"Review Deadline: {name}",
        description=f"Deadline for document: {submission.filename}",
        start=submission.deadline,
        end=submission.deadline,
    )


def ics_filename(title: str) -> str:
    return re.sub(r"\s+", "_", title) + ".ics"
