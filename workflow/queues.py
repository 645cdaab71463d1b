from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from shared.models import AuditLogEntry, Role, Stage, Submission, User
from shared.timeutil import parse_iso, to_ms

Predicate = Callable[[Submission, str], bool]

TO_REVIEW = "to-review"
RETURNED = "returned"
SENT = "sent"
SENT_BACK = "sent-back"
ALL = "all"
SUBMITTED = "submitted"
PUBLICATION = "publication"
MINE = "mine"


# ─────────────────────────────────────────────────────────────────────────────
# Role × queue predicates
# ─────────────────────────────────────────────────────────────────────────────
def _librarian_to_review(s: Submission, user: str) -> bool:
    return (s.stage == Stage.STAGE1 and not s.returned_from_review) or \
           (s.stage == Stage.STAGE2 and not s.sent_to_reviewer)


def _returned_from_review(s: Submission, user: str) -> bool:
    return s.stage == Stage.STAGE2 and s.returned_from_review


QUEUE_PREDICATES: Dict[Tuple[Role, str], Predicate] = {
    (Role.LIBRARIAN, TO_REVIEW): _librarian_to_review,
    (Role.LIBRARIAN, RETURNED): _returned_from_review,
    (Role.LIBRARIAN, SENT): lambda s, user: s.sent_by == user,
    (Role.LIBRARIAN, SENT_BACK): lambda s, user: (
        s.stage == Stage.STAGE1 and s.sent_back_to_student and s.sent_back_by == user
    ),
    # A reviewer never gets raw Stage1 submissions in to-review.
    (Role.REVIEWER, TO_REVIEW): lambda s, user: s.stage == Stage.STAGE2 and not s.returned_from_review,
    (Role.REVIEWER, RETURNED): _returned_from_review,
    (Role.REVIEWER, SENT): lambda s, user: s.stage == Stage.STAGE3 and s.approved_by == user,
    (Role.REVIEWER, SENT_BACK): lambda s, user: s.stage == Stage.STAGE1 and s.sent_back_by == user,
    (Role.ADMIN, ALL): lambda s, user: True,
    (Role.ADMIN, SUBMITTED): lambda s, user: s.stage == Stage.STAGE3,
    (Role.ADMIN, PUBLICATION): lambda s, user: s.stage == Stage.STAGE3 and s.ready_for_publication,
    (Role.STUDENT, MINE): lambda s, user: s.owner == user,
    (Role.STUDENT, RETURNED): lambda s, user: s.stage == Stage.STAGE0 and s.owner == user,
}


def _as_role(role: Union[Role, str, None]) -> Optional[Role]:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError:
        return None


def queues_for(role: Union[Role, str]) -> List[str]:
    r = _as_role(role)
    return [q for (qr, q) in QUEUE_PREDICATES if qr == r]


# ─────────────────────────────────────────────────────────────────────────────
# Narrowing filters
# ─────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class QueueFilter:
    """Extra filters applied after the role queue; each one only narrows."""

    text: str = ""
    status: str = ""
    date_from: Optional[Union[str, datetime]] = None
    date_to: Optional[Union[str, datetime]] = None
    priority: str = ""  # "high" = has a deadline, "low" = none

    def is_empty(self) -> bool:
        return not (self.text or self.status or self.date_from or self.date_to or self.priority)


def _bound_ms(value: Optional[Union[str, datetime]]) -> Optional[int]:
    if value is None or value == "":
        return None
    dt = value if isinstance(value, datetime) else parse_iso(value)
    return to_ms(dt) if dt else None


def apply_filter(items: Iterable[Submission], flt: Optional[QueueFilter]) -> List[Submission]:
    data = list(items)
    if flt is None or flt.is_empty():
        return data
    if flt.text:
        q = flt.text.strip().lower()
        data = [s for s in data if q in " ".join([s.owner, s.filename, s.title]).lower()]
    if flt.status:
        q = flt.status.strip().lower()
        data = [s for s in data if q in s.stage.value.lower() or q in s.stage.label.lower()]
    lo = _bound_ms(flt.date_from)
    if lo is not None:
        data = [s for s in data if s.time and s.time >= lo]
    hi = _bound_ms(flt.date_to)
    if hi is not None:
        data = [s for s in data if s.time and s.time <= hi]
    if flt.priority == "high":
        data = [s for s in data if s.deadline]
    elif flt.priority == "low":
        data = [s for s in data if not s.deadline]
    return data


# ─────────────────────────────────────────────────────────────────────────────
# Classification
# ─────────────────────────────────────────────────────────────────────────────
def dedupe_latest(submissions: Iterable[Submission]) -> List[Submission]:
    """One version per base identity: the greatest time, later position on ties."""
    latest: Dict[str, Submission] = {}
    for s in submissions:
        base = s.base_identity
        prev = latest.get(base)
        if prev is None or s.time >= prev.time:
            latest[base] = s
    return list(latest.values())


def _order(items: List[Submission]) -> List[Submission]:
    return sorted(items, key=lambda s: (-s.time, s.base_identity))


def classify(all_submissions: Iterable[Submission], acting_user: str, role: Union[Role, str],
             queue_name: str, filters: Optional[QueueFilter] = None) -> List[Submission]:
    """
    Current versions that belong to ``queue_name`` for ``role``.

    Pure; unknown role/queue gives an empty list. Output is newest first.
    """
    pred = QUEUE_PREDICATES.get((_as_role(role), queue_name))
    if pred is None:
        return []
    current = dedupe_latest(all_submissions)
    return _order(apply_filter((s for s in current if pred(s, acting_user)), filters))


def classify_for(all_submissions: Iterable[Submission], user: User, queue_name: str,
                 filters: Optional[QueueFilter] = None) -> List[Submission]:
    return classify(all_submissions, user.username, user.role, queue_name, filters)


def queue_counts(all_submissions: Iterable[Submission], acting_user: str, role: Union[Role, str],
                 filters: Optional[QueueFilter] = None) -> Dict[str, int]:
    snapshot = list(all_submissions)
    return {q: len(classify(snapshot, acting_user, role, q, filters)) for q in queues_for(role)}


def queue_of(submission: Submission, acting_user: str, role: Union[Role, str]) -> Optional[str]:
    """The tab a selected document is shown under; None when no queue holds it."""
    for q in queues_for(role):
        pred = QUEUE_PREDICATES[(_as_role(role), q)]
        if q in (SENT, ALL, MINE) and pred(submission, acting_user):
            return q
    for q in queues_for(role):
        if QUEUE_PREDICATES[(_as_role(role), q)](submission, acting_user):
            return q
    return None


def stage_counts(all_submissions: Iterable[Submission]) -> Dict[str, int]:
    counts = {st.value: 0 for st in Stage}
    for s in dedupe_latest(all_submissions):
        counts[s.stage.value] += 1
    return counts


def admin_log_view(entries: Iterable[AuditLogEntry], filters: Optional[QueueFilter] = None) -> List[AuditLogEntry]:
    """Audit entries newest first, narrowed by actor/filename text and date range."""
    data = list(entries)
    if filters is not None:
        if filters.text:
            q = filters.text.strip().lower()
            data = [e for e in data if q in f"{e.actor} {e.filename} {e.notes}".lower()]
        if filters.status:
            q = filters.status.strip().lower()
            data = [e for e in data if q in e.action.value.lower()]
        lo, hi = _bound_ms(filters.date_from), _bound_ms(filters.date_to)
        if lo is not None:
            data = [e for e in data if e.time >= lo]
        if hi is not None:
            data = [e for e in data if e.time <= hi]
    return sorted(data, key=lambda e: e.time, reverse=True)
