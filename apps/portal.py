"""Role-agnostic entry point wiring settings, store, engine and auth together.

Every method passes straight through to the workflow layer or to the staff
and student app helpers built on it; no workflow rule lives here.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from apps.staff_app.data import SubmissionInfo
from apps.staff_app.poller import QueuePoller, RowsCallback
from apps.staff_app.scan import scan_counts, scan_queue
from apps.staff_app.services import (
    BatchOutcome,
    clear_due_many,
    export_deadline_ics,
    return_submission,
    send_to_reviewer_many,
    set_due_many,
    tooltip_for,
)
from apps.student_app.data import InboxItem
from apps.student_app.scan import scan_inbox
from apps.student_app.services import download_submission, open_notifications, submit_file
from docstore.notes import NotesCache
from docstore.store import DocumentStore
from shared.config import Settings, load_settings
from shared.logsetup import setup_logging
from shared.models import Notification, Role, Submission, User
from shared.notifications import NotificationBox
from shared.paths import data_layout
from workflow.auth import AuthProvider, DirectoryAuthProvider
from workflow.publisher import DSpacePublisher, LocalPublisher, RepositoryPublisher
from workflow.queues import QueueFilter, admin_log_view, classify_for, queues_for, stage_counts
from workflow.transitions import TransitionEngine, TransitionResult

logger = logging.getLogger(__name__)

DEFAULT_QUEUE = {
    Role.STUDENT: "mine",
    Role.LIBRARIAN: "to-review",
    Role.REVIEWER: "to-review",
    Role.ADMIN: "all",
}


class Portal:
    def __init__(self, store: DocumentStore, *, auth: Optional[AuthProvider] = None,
                 publisher: Optional[RepositoryPublisher] = None,
                 notifications: Optional[NotificationBox] = None,
                 notes: Optional[NotesCache] = None,
                 max_upload_bytes: Optional[int] = None,
                 poll_interval: float = 90.0) -> None:
        self.store = store
        self.poll_interval = poll_interval
        self.auth = auth or DirectoryAuthProvider()
        self.notifications = notifications or NotificationBox()
        self.notes = notes or NotesCache()
        kwargs: Dict[str, Any] = {}
        if max_upload_bytes is not None:
            kwargs["max_upload_bytes"] = max_upload_bytes
        self.engine = TransitionEngine(
            store,
            publisher=publisher or LocalPublisher(),
            notifications=self.notifications,
            notes=self.notes,
            **kwargs,
        )

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, *, use_dspace: bool = False) -> "Portal":
        settings = settings or load_settings()
        layout = data_layout(settings.data_root)
        setup_logging(settings.log_level, layout["logs"])
        publisher: RepositoryPublisher = DSpacePublisher(settings.dspace) if use_dspace else LocalPublisher()
        logger.info("Opening portal data at %s", settings.data_root)
        return cls(
            DocumentStore.open(settings.data_root),
            publisher=publisher,
            notifications=NotificationBox(layout["notifications"]),
            notes=NotesCache(layout["notes"]),
            max_upload_bytes=settings.max_upload_bytes,
            poll_interval=settings.poll_interval_seconds,
        )

    def login(self, username: str, password: str) -> User:
        return self.auth.authenticate(username, password)

    def submissions(self, user: User, queue: Optional[str] = None,
                    filters: Optional[QueueFilter] = None) -> List[Submission]:
        return classify_for(self.store.list_all(), user, queue or DEFAULT_QUEUE[user.role], filters)

    def update_status(self, user: User, base: str, action: str, **options: Any) -> TransitionResult:
        return self.engine.apply(action, base, user, **options)

    def upload(self, user: User, name: str, data: bytes, mimetype: Optional[str] = None) -> TransitionResult:
        return self.engine.submit(user, data, filename=name, mimetype=mimetype)

    def dashboard(self, user: User) -> Dict[str, Any]:
        snapshot = self.store.list_all()
        board: Dict[str, Any] = {
            "user": user.username,
            "role": user.role.value,
            "queues": queues_for(user.role),
            "counts": scan_counts(self.store, user),
            "unread_notifications": self.notifications.unread_count(user.username),
        }
        if user.role == Role.ADMIN:
            board["stages"] = stage_counts(snapshot)
            board["recent_activity"] = admin_log_view(self.store.list_audit_log())[:20]
        return board

    # ─────────────────────────────────────────────────────────────────────
    # Staff surface
    # ─────────────────────────────────────────────────────────────────────
    def queue_rows(self, user: User, queue: Optional[str] = None,
                   filters: Optional[QueueFilter] = None) -> List[SubmissionInfo]:
        return scan_queue(self.store, user, queue or DEFAULT_QUEUE[user.role], filters=filters, notes=self.notes)

    def describe(self, row: SubmissionInfo) -> str:
        return tooltip_for(row)

    def set_due(self, user: User, rows: Iterable[SubmissionInfo], due_iso: Optional[str]) -> BatchOutcome:
        """Set (or with ``None`` clear) the deadline on every selected row."""
        if due_iso is None:
            return clear_due_many(self.engine, user, rows)
        return set_due_many(self.engine, user, rows, due_iso)

    def send_to_reviewer(self, user: User, rows: Iterable[SubmissionInfo]) -> BatchOutcome:
        return send_to_reviewer_many(self.engine, user, rows)

    def send_back(self, user: User, row: SubmissionInfo, *, confirmed: bool, notes: str = "") -> None:
        return_submission(self.engine, user, row, confirmed=confirmed, notes=notes)

    def export_ics(self, row: SubmissionInfo, dest_dir: Path) -> Optional[Path]:
        return export_deadline_ics(row, dest_dir)

    def poller(self, user: User, callback: RowsCallback, queue: Optional[str] = None, *,
               interval: Optional[float] = None, filters: Optional[QueueFilter] = None) -> QueuePoller:
        """Auto-rescan for one staff tab; not started."""
        return QueuePoller(self.store, user, queue or DEFAULT_QUEUE[user.role], callback,
                           interval=interval if interval is not None else self.poll_interval,
                           filters=filters, notes=self.notes)

    # ─────────────────────────────────────────────────────────────────────
    # Student surface
    # ─────────────────────────────────────────────────────────────────────
    def inbox(self, user: User) -> List[InboxItem]:
        return scan_inbox(self.store, user, self.notifications)

    def upload_file(self, user: User, path: Path, *, title: str = "") -> TransitionResult:
        return submit_file(self.engine, user, path, title=title)

    def notifications_for(self, user: User, *, mark_read: bool = True) -> List[Notification]:
        return open_notifications(self.notifications, user, mark_read=mark_read)

    def download(self, user: User, base: str, dest_dir: Path) -> Optional[Path]:
        return download_submission(self.engine, user, base, dest_dir)
