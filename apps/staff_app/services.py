from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from shared.due import deadline_ics, ics_filename
from shared.errors import PortalError
from shared.models import User
from workflow.transitions import TransitionEngine

from .data import SubmissionInfo

logger = logging.getLogger(__name__)

BatchOutcome = Tuple[int, List[Tuple[str, str]]]


def tooltip_for(info: SubmissionInfo) -> str:
    lines = [f"{info.filename} ({info.status})"]
    if info.when_label:
        lines.append(info.when_label.capitalize())
    if info.due_iso:
        lines.append(f"Due: {info.due_label}" + ("  ⚠ OVERDUE" if info.overdue else ""))
    if info.submission.sent_by:
        lines.append(f"Sent to reviewer by {info.submission.sent_by}")
    if info.notes:
        lines.append(f"Notes: {info.notes}")
    return "\n".join(lines)


def _batch(infos: Iterable[SubmissionInfo], action) -> BatchOutcome:
    """Apply ``action`` to each row; one failure does not stop the others."""
    ok, fail = 0, []
    for info in infos:
        try:
            action(info)
            ok += 1
        except PortalError as e:
            fail.append((info.filename, str(e)))
    return ok, fail


def set_due_many(engine: TransitionEngine, actor: User, infos: Iterable[SubmissionInfo], due_iso: str) -> BatchOutcome:
    return _batch(infos, lambda i: engine.set_deadline(i.submission, actor, due_iso))


def clear_due_many(engine: TransitionEngine, actor: User, infos: Iterable[SubmissionInfo]) -> BatchOutcome:
    return _batch(infos, lambda i: engine.set_deadline(i.submission, actor, None))


def send_to_reviewer_many(engine: TransitionEngine, actor: User, infos: Iterable[SubmissionInfo]) -> BatchOutcome:
    return _batch(infos, lambda i: engine.approve_to_reviewer(i.submission, actor))


def return_submission(engine: TransitionEngine, actor: User, info: SubmissionInfo, *,
                      confirmed: bool, notes: str = "") -> None:
    """Send one document back to its student; the UI asks for ``confirmed`` first."""
    engine.return_to_student(info.submission, actor, confirm=confirmed, notes=notes)


def export_deadline_ics(info: SubmissionInfo, dest_dir: Path) -> Optional[Path]:
    """Write ``Review_Deadline:_<file>.ics`` next to ``dest_dir``; None when no deadline is set."""
    text = deadline_ics(info.submission)
    if text is None:
        return None
    dest_dir.mkdir(parents=True, exist_ok=True)
    dest = dest_dir / ics_filename(f"Review Deadline: {info.filename}")
    dest.write_text(text, encoding="utf-8")
    logger.info("Wrote calendar reminder %s", dest)
    return dest
