from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from shared.detect import guess_mimetype
from shared.errors import StorageError, ValidationError
from shared.models import Notification, User
from shared.notifications import NotificationBox
from workflow.transitions import TransitionEngine, TransitionResult

logger = logging.getLogger(__name__)


def submit_file(engine: TransitionEngine, user: User, path: Path, *, title: str = "") -> TransitionResult:
    """Read a local file and submit it; the store names it after the student."""
    if not path.is_file():
        raise ValidationError("No file uploaded.")
    try:
        data = path.read_bytes()
    except OSError as e:
        raise StorageError(f"Could not read {path}: {e}") from e
    return engine.submit(user, data, filename=path.name, mimetype=guess_mimetype(path.name),
                         title=title or path.stem)


def open_notifications(box: NotificationBox, user: User, *, mark_read: bool = True) -> List[Notification]:
    """Unread notifications for the student; marks them read once shown."""
    items = box.for_user(user.username, unread_only=True)
    if mark_read:
        for n in items:
            box.mark_read(n.id)
    return items


def download_submission(engine: TransitionEngine, user: User, base: str, dest_dir: Path) -> Optional[Path]:
    """Copy the student's current file out of the blob store; None when it has no content."""
    current = engine.store.current(base)
    if current is None or current.owner != user.username or not current.content_digest:
        return None
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / current.filename
    dest.write_bytes(engine.store.get_content(current.content_digest))
    logger.info("Saved %s to %s", current.filename, dest)
    return dest
