from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import List, Optional

from shared.errors import CorruptLedgerError, StorageError
from shared.models import Notification, Stage, Submission, new_notification_id, now_ms

logger = logging.getLogger(__name__)


def make_notification(submission: Submission, *, target_stage: Stage, message: str = "",
                      ts: Optional[int] = None) -> Notification:
    """Build the record shown to the submission's owner after a transition."""
    ts = ts if ts is not None else now_ms()
    return Notification(
        id=new_notification_id(ts),
        filename=submission.filename,
        target_user=submission.owner,
        target_stage=target_stage,
        time=ts,
        message=message or f"{submission.filename} has been sent back to you for review.",
    )


def published_notification(submission: Submission, *, ts: Optional[int] = None) -> Notification:
    where = submission.repository or "the repository"
    return make_notification(
        submission,
        target_stage=Stage.STAGE4,
        message=f"{submission.filename} has been published to {where}.",
        ts=ts,
    )


class NotificationBox:
    """
    Per-user notification list persisted as a JSON array.
    path=None keeps everything in memory (tests, previews).
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._items: List[Notification] = self._load()

    def _load(self) -> List[Notification]:
        if self._path is None or not self._path.exists():
            return []
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            return [Notification.from_dict(d) for d in raw]
        except (ValueError, KeyError, TypeError) as e:
            raise CorruptLedgerError(f"Notifications file is unreadable: {self._path}") from e

    def _save(self) -> None:
        if self._path is None:
            return
        data = json.dumps([n.to_dict() for n in self._items], ensure_ascii=False, indent=2)
        tmp = self._path.with_suffix(".tmp")
        try:
            tmp.write_text(data, encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            logger.error("Could not write notifications to %s: %s", self._path, e)
            raise StorageError(str(e)) from e

    def push(self, notification: Notification) -> Notification:
        with self._lock:
            self._items.append(notification)
            try:
                self._save()
            except StorageError:
                self._items.pop()
                raise
        logger.debug("Notification %s queued for %s", notification.id, notification.target_user)
        return notification

    def for_user(self, username: str, *, unread_only: bool = False) -> List[Notification]:
        with self._lock:
            items = [n for n in self._items if n.target_user == username]
        if unread_only:
            items = [n for n in items if not n.read]
        return sorted(items, key=lambda n: n.time, reverse=True)

    def unread_count(self, username: str) -> int:
        return len(self.for_user(username, unread_only=True))

    def mark_read(self, notification_id: str) -> bool:
        with self._lock:
            for n in self._items:
                if n.id == notification_id and not n.read:
                    n.read = True
                    try:
                        self._save()
                    except StorageError:
                        n.read = False
                        raise
                    return True
        return False
