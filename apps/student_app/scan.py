from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from docstore.store import DocumentStore
from shared.due import deadline_label, is_overdue
from shared.events import get_submission_times
from shared.models import Stage, User
from shared.notifications import NotificationBox
from shared.paths import base_identity
from shared.timeutil import ms_to_local_str
from workflow.queues import MINE, classify_for

from .data import InboxItem


def scan_inbox(store: DocumentStore, user: User, notifications: Optional[NotificationBox] = None, *,
               now: Optional[datetime] = None) -> List[InboxItem]:
    """The student's own documents, newest first, with unread notification counts."""
    audit = store.list_audit_log()
    unread: Dict[str, int] = {}
    if notifications is not None:
        for n in notifications.for_user(user.username, unread_only=True):
            key = base_identity(n.filename)
            unread[key] = unread.get(key, 0) + 1

    out: List[InboxItem] = []
    for s in classify_for(store.list_all(), user, MINE):
        times = get_submission_times(audit, s.base_identity)
        when_label = ""
        if s.stage == Stage.STAGE0 and times["returned"]:
            when_label = f"returned {ms_to_local_str(times['returned'])}"
        elif times["submitted"]:
            when_label = f"submitted {ms_to_local_str(times['submitted'])}"
        out.append(InboxItem(
            base=s.base_identity,
            filename=s.filename,
            label=s.stage.label,
            when_label=when_label,
            due_iso=s.deadline,
            due_label=deadline_label(s.deadline),
            overdue=is_overdue(s.deadline, now),
            can_resubmit=s.stage == Stage.STAGE0,
            unread=unread.get(s.base_identity, 0),
        ))
    return out
