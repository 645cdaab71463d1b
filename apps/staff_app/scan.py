from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from docstore.notes import NotesCache
from docstore.store import DocumentStore
from shared.due import deadline_label, is_overdue
from shared.events import get_submission_times
from shared.models import User
from shared.timeutil import ms_to_local_str
from workflow.queues import QueueFilter, classify_for, queue_counts

from .data import SubmissionInfo


def build_when_label(submitted_ms: Optional[int], returned_ms: Optional[int]) -> str:
    if returned_ms:
        return f"returned {ms_to_local_str(returned_ms)}"
    if submitted_ms:
        return f"submitted {ms_to_local_str(submitted_ms)}"
    return ""


def scan_queue(store: DocumentStore, user: User, queue: str, *,
               filters: Optional[QueueFilter] = None,
               notes: Optional[NotesCache] = None,
               now: Optional[datetime] = None) -> List[SubmissionInfo]:
    """Rows for one staff tab, built from a fresh snapshot of the ledger."""
    audit = store.list_audit_log()
    results: List[SubmissionInfo] = []
    for s in classify_for(store.list_all(), user, queue, filters):
        times = get_submission_times(audit, s.base_identity)
        sub_ms, ret_ms = times["submitted"], times["returned"]
        results.append(SubmissionInfo(
            submission=s,
            student=s.owner,
            filename=s.filename,
            title=s.title or s.base_identity,
            stage=s.stage.value,
            status=s.stage.label,
            queue=queue,
            submitted_ms=sub_ms,
            returned_ms=ret_ms,
            when_label=build_when_label(sub_ms, ret_ms),
            due_iso=s.deadline,
            due_label=deadline_label(s.deadline),
            overdue=is_overdue(s.deadline, now),
            notes=notes.get(s.base_identity) if notes is not None else "",
        ))
    return results


def scan_counts(store: DocumentStore, user: User, filters: Optional[QueueFilter] = None) -> Dict[str, int]:
    return queue_counts(store.list_all(), user.username, user.role, filters)
