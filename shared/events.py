from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from shared.models import ActionKind, AuditLogEntry, now_ms


# ─────────────────────────────────────────────────────────────────────────────
# Time helpers
# ─────────────────────────────────────────────────────────────────────────────
def utcnow_iso() -> str:
    """UTC now in ISO-8601 with Z (e.g. 2025-09-27T14:03:21Z)."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def _normalise_iso(ts: str) -> str:
    """Accept 'Z' or '+00:00' forms; return canonical Z form."""
    if ts.endswith("+00:00"):
        return ts[:-6] + "Z"
    return ts


def ms_to_iso(ms: int) -> str:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return _normalise_iso(dt.isoformat(timespec="seconds"))


# ─────────────────────────────────────────────────────────────────────────────
# Audit entry factories
# ─────────────────────────────────────────────────────────────────────────────
def audit_entry(action: ActionKind, actor: str, filename: str, *, notes: str = "",
                ts: Optional[int] = None, **extra: Any) -> AuditLogEntry:
    return AuditLogEntry(
        time=ts if ts is not None else now_ms(),
        actor=actor,
        action=action,
        filename=filename,
        notes=notes,
        extra={k: v for k, v in extra.items() if v is not None},
    )


def submitted_entry(actor: str, filename: str, *, resubmission: bool = False, ts: Optional[int] = None) -> AuditLogEntry:
    notes = "Resubmitted by student" if resubmission else "Submitted by student"
    return audit_entry(ActionKind.SUBMITTED, actor, filename, notes=notes, ts=ts)


def sent_to_reviewer_entry(actor: str, filename: str, *, notes: str = "", ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.SENT_TO_REVIEWER, actor, filename,
                       notes=notes or f"Sent to reviewer by {actor}", ts=ts)


def returned_from_review_entry(actor: str, filename: str, *, notes: str = "", ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.RETURNED_FROM_REVIEW, actor, filename,
                       notes=notes or f"Returned to librarian by {actor}", ts=ts)


def sent_back_entry(actor: str, filename: str, owner: str, *, notes: str = "", ts: Optional[int] = None) -> AuditLogEntry:
    text = f"Sent back to student: {owner}"
    if notes:
        text = f"{text} ({notes})"
    return audit_entry(ActionKind.SENT_BACK, actor, filename, notes=text, ts=ts, owner=owner)


def undo_send_entry(actor: str, filename: str, *, ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.UNDO_SEND_TO_REVIEWER, actor, filename,
                       notes=f"Undone by {actor} and moved back to review queue", ts=ts)


def approved_entry(actor: str, filename: str, *, ready: bool, notes: str = "", ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.APPROVED_FOR_PUBLICATION, actor, filename,
                       notes=notes or f"Approved by {actor}", ts=ts, ready_for_publication=ready)


def marked_ready_entry(actor: str, filename: str, *, ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.MARKED_READY, actor, filename,
                       notes=f"Marked ready for publication by {actor}", ts=ts)


def published_entry(actor: str, filename: str, repository: str, *, doi: Optional[str] = None,
                    external_id: Optional[str] = None, ts: Optional[int] = None) -> AuditLogEntry:
    notes = f"Published to {repository}" + (f" (DOI: {doi})" if doi else "")
    return audit_entry(ActionKind.PUBLISHED, actor, filename, notes=notes, ts=ts,
                       repository=repository, doi=doi, external_id=external_id)


def file_replaced_entry(actor: str, filename: str, digest: str, *, ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.FILE_REPLACED, actor, filename,
                       notes=f"File replaced by {actor}", ts=ts, digest=digest)


def deadline_entry(actor: str, filename: str, deadline: Optional[str], *, ts: Optional[int] = None) -> AuditLogEntry:
    notes = f"Deadline set to {deadline}" if deadline else "Deadline cleared"
    return audit_entry(ActionKind.DEADLINE_SET, actor, filename, notes=notes, ts=ts, deadline=deadline)


def history_cleared_entry(actor: str, removed: int, *, ts: Optional[int] = None) -> AuditLogEntry:
    return audit_entry(ActionKind.HISTORY_CLEARED, actor, "",
                       notes=f"{removed} sent document(s) cleared by {actor}", ts=ts, removed=removed)


# ─────────────────────────────────────────────────────────────────────────────
# Read helpers
# ─────────────────────────────────────────────────────────────────────────────
def list_events(entries: Iterable[AuditLogEntry], kinds: Optional[Iterable[ActionKind]] = None,
                actor: Optional[str] = None) -> List[AuditLogEntry]:
    """Newest-first, optionally narrowed by action kind and actor."""
    wanted = set(kinds) if kinds else None
    out = [
        e for e in entries
        if (wanted is None or e.action in wanted) and (actor is None or e.actor == actor)
    ]
    return sorted(out, key=lambda e: e.time, reverse=True)


def get_submission_times(entries: Iterable[AuditLogEntry], base: str) -> Dict[str, Optional[int]]:
    """
    Return first 'submitted' and latest 'sent back' times (ms) for a base identity.
    """
    from shared.paths import base_identity

    submitted: Optional[int] = None
    returned: Optional[int] = None
    for e in entries:
        if base_identity(e.filename) != base:
            continue
        if e.action == ActionKind.SUBMITTED:
            if submitted is None or e.time < submitted:
                submitted = e.time
        elif e.action == ActionKind.SENT_BACK:
            if returned is None or e.time > returned:
                returned = e.time
    return {"submitted": submitted, "returned": returned}
