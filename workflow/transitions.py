"""Transition engine for the submission lifecycle.

Stages run Stage1 (student upload) -> Stage2 (reviewer) -> Stage3 (approved)
-> Stage4 (published), with Stage0 meaning "returned to the student". Each
operation re-reads the current version under the base identity's lock,
rejects stale client copies with ConflictError, checks the stage/role
precondition and commits the new version together with its audit entry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import PurePath
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from docstore.notes import NotesCache
from docstore.store import DocumentStore
from shared import events
from shared.detect import MAX_UPLOAD_BYTES, validate_upload
from shared.due import normalise_deadline
from shared.errors import ConflictError, NotFoundError, PermissionDeniedError, StorageError, ValidationError
from shared.models import AuditLogEntry, Notification, Role, Stage, Submission, User, now_ms
from shared.notifications import NotificationBox, make_notification, published_notification
from shared.paths import base_identity, rename_for_stage, sanitize_filename, stage_filename, student_filename

from .publisher import LocalPublisher, PublicationMetadata, RepositoryPublisher

logger = logging.getLogger(__name__)

Target = Union[Submission, str]
Builder = Callable[[Submission, int], Tuple[Submission, AuditLogEntry]]

STAFF = (Role.LIBRARIAN, Role.REVIEWER, Role.ADMIN)


@dataclass(frozen=True)
class TransitionResult:
    submission: Submission
    audit_entry: AuditLogEntry
    notification: Optional[Notification] = None


def _resolve(target: Target) -> Tuple[str, Optional[int]]:
    """(base identity, expected time); a bare name means 'act on the latest version'."""
    if isinstance(target, Submission):
        return target.base_identity, target.time
    if not target:
        raise ValidationError("No submission selected")
    return base_identity(target), None


class TransitionEngine:
    def __init__(self, store: DocumentStore, *,
                 publisher: Optional[RepositoryPublisher] = None,
                 notifications: Optional[NotificationBox] = None,
                 notes: Optional[NotesCache] = None,
                 clock: Callable[[], int] = now_ms,
                 max_upload_bytes: int = MAX_UPLOAD_BYTES) -> None:
        self.store = store
        self.publisher = publisher or LocalPublisher()
        self.notifications = notifications or NotificationBox()
        self.notes = notes
        self._clock = clock
        self._max_upload_bytes = max_upload_bytes

    # ─────────────────────────────────────────────────────────────────────
    # Plumbing
    # ─────────────────────────────────────────────────────────────────────
    def _next_time(self, current: Optional[Submission]) -> int:
        ts = self._clock()
        if current is not None and ts <= current.time:
            ts = current.time + 1
        return ts

    @staticmethod
    def _require_role(actor: User, roles: Iterable[Role], action: str) -> None:
        allowed = tuple(roles)
        if actor.role not in allowed:
            logger.warning("%s (%s) may not %s", actor.username, actor.role.value, action)
            raise PermissionDeniedError(
                f"{action} requires role {' or '.join(r.value for r in allowed)}, not {actor.role.value}"
            )

    @staticmethod
    def _reject(action: str, current: Submission, reason: str) -> ValidationError:
        logger.warning("Rejected %s on %s (%s): %s", action, current.filename, current.stage.value, reason)
        return ValidationError(f"Cannot {action} {current.filename}: {reason}")

    def _push(self, notification: Optional[Notification]) -> Optional[Notification]:
        if notification is None:
            return None
        try:
            return self.notifications.push(notification)
        except StorageError:
            # the transition itself is already committed
            logger.exception("Notification for %s could not be stored", notification.target_user)
            return None

    def _apply(self, action: str, target: Target, actor: User, roles: Iterable[Role],
               check: Callable[[Submission], None], build: Builder, *,
               drop: Optional[Callable[[Submission], bool]] = None,
               notify: Optional[Callable[[Submission, Submission, int], Notification]] = None) -> TransitionResult:
        self._require_role(actor, roles, action)
        base, expected = _resolve(target)
        with self.store.locked(base):
            current = self.store.current(base)
            if current is None:
                raise NotFoundError(f"No submission '{base}'")
            if expected is not None and current.time != expected:
                logger.warning("Stale %s on %s by %s", action, base, actor.username)
                raise ConflictError(base, expected, current.time)
            check(current)
            ts = self._next_time(current)
            new, entry = build(current, ts)
            self.store.commit(new, entry, expected_time=current.time, drop=drop)
        logger.info("%s: %s -> %s by %s", action, current.filename, new.filename, actor.username)
        if self.notes is not None and new.stage != current.stage:
            try:
                self.notes.clear(base)
            except StorageError:
                logger.exception("Notes for %s could not be cleared", base)
        notification = self._push(notify(current, new, ts)) if notify else None
        return TransitionResult(new, entry, notification)

    # ─────────────────────────────────────────────────────────────────────
    # Student
    # ─────────────────────────────────────────────────────────────────────
    def submit(self, actor: User, content: bytes, *, filename: Optional[str] = None,
               mimetype: Optional[str] = None, title: str = "", deadline: Optional[str] = None) -> TransitionResult:
        """
        Create a Stage1 version named after the student (first_last_Stage1.pdf);
        a Stage0 (returned) document may be resubmitted. ``filename`` is the
        uploaded file's own name: it drives the MIME check and the default title.
        """
        self._require_role(actor, (Role.STUDENT,), "submit")
        name = student_filename(actor)
        upload_name = sanitize_filename(filename) if filename else name
        mt = validate_upload(upload_name, len(content), mimetype, self._max_upload_bytes)
        base = base_identity(name)
        uploaded_title = PurePath(upload_name).stem if filename else ""
        try:
            due = normalise_deadline(deadline)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        with self.store.locked(base):
            current = self.store.current(base)
            if current is not None:
                if current.owner != actor.username:
                    raise PermissionDeniedError(f"{current.filename} belongs to another student")
                if current.stage != Stage.STAGE0:
                    raise self._reject("submit", current, "already in the review workflow")
            digest = self.store.put_content(content)
            ts = self._next_time(current)
            new = Submission(
                filename=stage_filename(base, Stage.STAGE1),
                stage=Stage.STAGE1,
                owner=actor.username,
                time=ts,
                title=title or uploaded_title or (current.title if current else base),
                deadline=due if due is not None else (current.deadline if current else None),
                content_digest=digest,
                size=len(content),
                mimetype=mt,
                sent_back_to_student=current.sent_back_to_student if current else False,
                sent_back_by=current.sent_back_by if current else None,
            )
            entry = events.submitted_entry(actor.username, new.filename, resubmission=current is not None, ts=ts)
            self.store.commit(new, entry, expected_time=current.time if current else None)
        logger.info("submit: %s by %s", new.filename, actor.username)
        return TransitionResult(new, entry)

    # ─────────────────────────────────────────────────────────────────────
    # Librarian
    # ─────────────────────────────────────────────────────────────────────
    def approve_to_reviewer(self, target: Target, actor: User, *, notes: str = "") -> TransitionResult:
        def check(cur: Submission) -> None:
            if cur.stage == Stage.STAGE1:
                return
            if cur.stage == Stage.STAGE2 and (not cur.sent_to_reviewer or cur.returned_from_review):
                return
            raise self._reject("send to reviewer", cur, "only Stage1 or unsent/returned Stage2 documents qualify")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(
                stage=Stage.STAGE2,
                filename=rename_for_stage(cur.filename, Stage.STAGE2),
                time=ts,
                sent_to_reviewer=True,
                sent_by=actor.username,
                returned_from_review=False,
            )
            return new, events.sent_to_reviewer_entry(actor.username, new.filename, notes=notes, ts=ts)

        return self._apply("send to reviewer", target, actor, (Role.LIBRARIAN,), check, build,
                           drop=lambda s: s.stage == Stage.STAGE2)

    def undo_send_to_reviewer(self, target: Target, actor: User) -> TransitionResult:
        def check(cur: Submission) -> None:
            if cur.stage != Stage.STAGE2:
                raise self._reject("undo send", cur, "only Stage2 documents can be recalled")
            if cur.sent_by != actor.username:
                raise self._reject("undo send", cur, f"it was sent by {cur.sent_by or 'nobody'}")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(
                stage=Stage.STAGE1,
                filename=rename_for_stage(cur.filename, Stage.STAGE1),
                time=ts,
                sent_to_reviewer=False,
                sent_by=None,
                returned_from_review=False,
            )
            return new, events.undo_send_entry(actor.username, cur.filename, ts=ts)

        return self._apply("undo send", target, actor, (Role.LIBRARIAN,), check, build)

    def clear_sent_history(self, actor: User) -> int:
        """
        Hard-delete every document whose current version this librarian sent,
        with all its earlier versions; the only purge the ledger allows.
        """
        self._require_role(actor, (Role.LIBRARIAN,), "clear sent history")
        return self.store.purge(
            lambda s: s.sent_by == actor.username,
            lambda n: events.history_cleared_entry(actor.username, n, ts=self._clock()),
            whole_identity=True,
        )

    # ─────────────────────────────────────────────────────────────────────
    # Librarian / reviewer
    # ─────────────────────────────────────────────────────────────────────
    def return_to_student(self, target: Target, actor: User, *, confirm: bool = False,
                          notes: str = "") -> TransitionResult:
        """Irrevocable: the caller must pass ``confirm=True`` after warning the user."""
        allowed = {Role.LIBRARIAN: (Stage.STAGE1, Stage.STAGE2), Role.REVIEWER: (Stage.STAGE2,)}

        def check(cur: Submission) -> None:
            if not confirm:
                raise self._reject("send back", cur, "explicit confirmation is required")
            if cur.stage not in allowed.get(actor.role, ()):
                raise self._reject("send back", cur, f"a {actor.role.value} cannot return a {cur.stage.value} document")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(
                stage=Stage.STAGE0,
                filename=rename_for_stage(cur.filename, Stage.STAGE0),
                time=ts,
                sent_to_reviewer=False,
                sent_by=None,
                returned_from_review=False,
                approved_by=None,
                ready_for_publication=False,
                sent_back_to_student=True,
                sent_back_by=actor.username,
            )
            return new, events.sent_back_entry(actor.username, cur.filename, cur.owner, notes=notes, ts=ts)

        def notify(cur: Submission, new: Submission, ts: int) -> Notification:
            return make_notification(cur, target_stage=Stage.STAGE0, ts=ts)

        return self._apply("send back", target, actor, allowed.keys(), check, build, notify=notify)

    def replace_content(self, target: Target, actor: User, content: bytes, *,
                        mimetype: Optional[str] = None) -> TransitionResult:
        """Swap the stored file for the current stage (drag-and-drop replacement)."""
        visible = {
            Role.LIBRARIAN: (Stage.STAGE1, Stage.STAGE2),
            Role.REVIEWER: (Stage.STAGE2,),
            Role.ADMIN: (Stage.STAGE1, Stage.STAGE2, Stage.STAGE3),
        }
        base, _ = _resolve(target)
        mt = validate_upload(stage_filename(base, Stage.STAGE1), len(content),
                             mimetype or "application/pdf", self._max_upload_bytes)

        def check(cur: Submission) -> None:
            if cur.stage not in visible.get(actor.role, ()):
                raise self._reject("replace file", cur, f"not editable by a {actor.role.value}")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            digest = self.store.put_content(content)
            new = cur.evolve(
                filename=rename_for_stage(cur.filename, cur.stage),
                time=ts,
                content_digest=digest,
                size=len(content),
                mimetype=mt,
            )
            return new, events.file_replaced_entry(actor.username, new.filename, digest, ts=ts)

        return self._apply("replace file", target, actor, STAFF, check, build)

    def set_deadline(self, target: Target, actor: User, deadline: Optional[str]) -> TransitionResult:
        try:
            due = normalise_deadline(deadline)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        def check(cur: Submission) -> None:
            if cur.stage == Stage.STAGE4:
                raise self._reject("set deadline", cur, "already published")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(deadline=due, time=ts)
            return new, events.deadline_entry(actor.username, new.filename, due, ts=ts)

        return self._apply("set deadline", target, actor, STAFF, check, build)

    # ─────────────────────────────────────────────────────────────────────
    # Reviewer
    # ─────────────────────────────────────────────────────────────────────
    def return_to_librarian(self, target: Target, actor: User, *, notes: str = "") -> TransitionResult:
        def check(cur: Submission) -> None:
            if cur.stage != Stage.STAGE2 or not cur.sent_to_reviewer or cur.returned_from_review:
                raise self._reject("return to librarian", cur, "only documents under review can be returned")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(time=ts, returned_from_review=True)
            return new, events.returned_from_review_entry(actor.username, new.filename, notes=notes, ts=ts)

        return self._apply("return to librarian", target, actor, (Role.REVIEWER,), check, build)

    return_to_reviewer_queue = return_to_librarian

    def approve_to_admin(self, target: Target, actor: User, *, ready_for_publication: bool = True,
                         notes: str = "") -> TransitionResult:
        def check(cur: Submission) -> None:
            if cur.stage != Stage.STAGE2 or cur.returned_from_review:
                raise self._reject("approve", cur, "only Stage2 documents under review can be approved")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(
                stage=Stage.STAGE3,
                filename=rename_for_stage(cur.filename, Stage.STAGE3),
                time=ts,
                approved_by=actor.username,
                ready_for_publication=ready_for_publication,
            )
            return new, events.approved_entry(actor.username, new.filename, ready=ready_for_publication,
                                              notes=notes, ts=ts)

        return self._apply("approve", target, actor, (Role.REVIEWER,), check, build)

    # ─────────────────────────────────────────────────────────────────────
    # Admin
    # ─────────────────────────────────────────────────────────────────────
    def mark_ready_for_publication(self, target: Target, actor: User) -> TransitionResult:
        def check(cur: Submission) -> None:
            if cur.stage != Stage.STAGE3:
                raise self._reject("mark ready", cur, "only approved Stage3 documents qualify")
            if cur.ready_for_publication:
                raise self._reject("mark ready", cur, "already ready for publication")

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(time=ts, ready_for_publication=True)
            return new, events.marked_ready_entry(actor.username, new.filename, ts=ts)

        return self._apply("mark ready", target, actor, (Role.ADMIN,), check, build)

    def publish(self, target: Target, actor: User, *, repository: str = "DSpace Repository",
                doi: Optional[str] = None, keywords: Optional[Iterable[str]] = None,
                abstract: str = "") -> TransitionResult:
        """
        Deposit with the repository publisher, then move to Stage4.
        A publisher failure leaves the ledger untouched.
        """
        kws: List[str] = [k.strip() for k in (keywords or []) if k and k.strip()]
        external: Dict[str, str] = {}

        def check(cur: Submission) -> None:
            if cur.stage != Stage.STAGE3 or not cur.ready_for_publication:
                raise self._reject("publish", cur, "document is not ready for publication")
            content = self.store.get_content(cur.content_digest) if cur.content_digest else None
            metadata = PublicationMetadata(
                repository=repository,
                title=cur.title or cur.base_identity,
                author=cur.owner,
                doi=doi,
                keywords=kws,
                abstract=abstract,
            )
            external["id"] = self.publisher.publish(cur, metadata, content)

        def build(cur: Submission, ts: int) -> Tuple[Submission, AuditLogEntry]:
            new = cur.evolve(
                stage=Stage.STAGE4,
                filename=rename_for_stage(cur.filename, Stage.STAGE4),
                time=ts,
                published_by=actor.username,
                published_at=events.ms_to_iso(ts),
                repository=repository,
                doi=doi or None,
                keywords=kws,
                external_id=external.get("id"),
            )
            entry = events.published_entry(actor.username, cur.filename, repository, doi=doi,
                                           external_id=external.get("id"), ts=ts)
            return new, entry

        def notify(cur: Submission, new: Submission, ts: int) -> Notification:
            return published_notification(new, ts=ts)

        try:
            return self._apply("publish", target, actor, (Role.ADMIN,), check, build, notify=notify)
        except StorageError:
            if external.get("id"):
                logger.error("Deposit %s for %s has no ledger record; the commit failed",
                             external["id"], target if isinstance(target, str) else target.filename)
            raise

    # ─────────────────────────────────────────────────────────────────────
    # Dispatch by action name
    # ─────────────────────────────────────────────────────────────────────
    ACTIONS = {
        "approve_to_reviewer": "approve_to_reviewer",
        "send_to_reviewer": "approve_to_reviewer",
        "return_to_student": "return_to_student",
        "send_back": "return_to_student",
        "undo_send_to_reviewer": "undo_send_to_reviewer",
        "undo": "undo_send_to_reviewer",
        "return_to_librarian": "return_to_librarian",
        "return_to_reviewer_queue": "return_to_librarian",
        "approve_to_admin": "approve_to_admin",
        "approve": "approve_to_admin",
        "mark_ready": "mark_ready_for_publication",
        "publish": "publish",
        "set_deadline": "set_deadline",
    }

    def apply(self, action: str, target: Target, actor: User, **options) -> TransitionResult:
        method = self.ACTIONS.get(action)
        if method is None:
            raise ValidationError(f"Unknown action '{action}'")
        return getattr(self, method)(target, actor, **options)
