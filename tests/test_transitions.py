import logging
import threading
from itertools import count
from pathlib import Path

import pytest

from docstore.backends import Ledger, MemoryBackend
from docstore.notes import NotesCache
from docstore.store import DocumentStore
from shared.errors import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    StorageError,
    ValidationError,
)
from shared.models import ActionKind, Role, Stage, User
from shared.notifications import NotificationBox
from workflow.publisher import LocalPublisher, RepositoryPublisher
from workflow.queues import classify_for
from workflow.transitions import TransitionEngine

JANE = User("jane.roe", Role.STUDENT, "Jane Roe")
BOB = User("bob.lee", Role.STUDENT, "Bob Lee")
CHEN = User("ms.chen", Role.LIBRARIAN, "Ms. Lisa Chen")
MARTINEZ = User("dr.martinez", Role.LIBRARIAN, "Dr. Maria Martinez")
ANDERSON = User("dr.anderson", Role.REVIEWER, "Dr. James Anderson")
PATEL = User("admin.patel", Role.ADMIN, "Admin Priya Patel")

PDF = b"%PDF-1.4 dissertation"


def make_engine(**kw) -> TransitionEngine:
    ticks = count(1_700_000_000_000, 1000)
    kw.setdefault("notifications", NotificationBox())
    return TransitionEngine(DocumentStore.in_memory(), clock=lambda: next(ticks), **kw)


class BrokenPublisher(RepositoryPublisher):
    def publish(self, submission, metadata, content=None):
        raise ExternalServiceError("repository offline")


class SwitchableBackend(MemoryBackend):
    fail = False

    def save(self, ledger: Ledger) -> None:
        if self.fail:
            raise StorageError("disk full")
        super().save(ledger)


def test_send_back_scenario_notifies_owner():
    engine = make_engine()
    r1 = engine.submit(JANE, PDF)
    assert r1.submission.filename == "jane_roe_Stage1.pdf"
    assert r1.submission.stage == Stage.STAGE1 and r1.submission.owner == "jane.roe"

    r2 = engine.approve_to_reviewer(r1.submission, CHEN)
    assert r2.submission.filename == "jane_roe_Stage2.pdf"
    assert r2.submission.sent_to_reviewer and r2.submission.sent_by == "ms.chen"
    snapshot = engine.store.list_all()
    assert [x.filename for x in classify_for(snapshot, CHEN, "sent")] == ["jane_roe_Stage2.pdf"]
    assert [x.filename for x in classify_for(snapshot, ANDERSON, "to-review")] == ["jane_roe_Stage2.pdf"]
    assert classify_for(snapshot, CHEN, "to-review") == []

    r3 = engine.return_to_student(r2.submission, ANDERSON, confirm=True)
    assert r3.submission.filename == "jane_roe_Stage0.pdf"
    assert r3.submission.stage == Stage.STAGE0
    assert r3.audit_entry.action == ActionKind.SENT_BACK
    assert r3.audit_entry.notes == "Sent back to student: jane.roe"
    snapshot = engine.store.list_all()
    assert classify_for(snapshot, CHEN, "to-review") == []
    assert classify_for(snapshot, ANDERSON, "to-review") == []
    assert [x.filename for x in classify_for(snapshot, JANE, "mine")] == ["jane_roe_Stage0.pdf"]

    n = r3.notification
    assert n is not None and n.target_user == "jane.roe" and n.target_stage == Stage.STAGE0
    assert n.message == "jane_roe_Stage2.pdf has been sent back to you for review."
    assert engine.notifications.unread_count("jane.roe") == 1

    assert len(engine.store.list_all()) == 3
    assert [e.action for e in engine.store.list_audit_log()] == [
        ActionKind.SUBMITTED, ActionKind.SENT_TO_REVIEWER, ActionKind.SENT_BACK,
    ]


def test_stale_copy_raises_conflict():
    engine = make_engine()
    first_read = engine.submit(JANE, PDF).submission
    engine.approve_to_reviewer(first_read, CHEN)
    with pytest.raises(ConflictError):
        engine.approve_to_reviewer(first_read, MARTINEZ)
    with pytest.raises(ConflictError):
        engine.return_to_student(first_read, CHEN, confirm=True)
    assert engine.store.current("jane_roe").sent_by == "ms.chen"


def test_concurrent_actions_on_same_copy_one_wins():
    engine = make_engine()
    first_read = engine.submit(JANE, PDF).submission
    barrier = threading.Barrier(2)
    outcomes = []

    def act(actor):
        barrier.wait()
        try:
            engine.approve_to_reviewer(first_read, actor)
            outcomes.append("ok")
        except ConflictError:
            outcomes.append("conflict")

    threads = [threading.Thread(target=act, args=(u,)) for u in (CHEN, MARTINEZ)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sorted(outcomes) == ["conflict", "ok"]
    assert len(engine.store.list_audit_log()) == 2


def test_versions_always_move_forward_in_time():
    engine = TransitionEngine(DocumentStore.in_memory(), clock=lambda: 5)
    r1 = engine.submit(JANE, PDF)
    r2 = engine.approve_to_reviewer("jane_roe", CHEN)
    assert (r1.submission.time, r2.submission.time) == (5, 6)
    assert engine.store.current("jane_roe") == r2.submission


def test_role_and_stage_guards():
    engine = make_engine()
    s = engine.submit(JANE, PDF).submission
    with pytest.raises(PermissionDeniedError):
        engine.approve_to_reviewer(s, JANE)
    with pytest.raises(PermissionDeniedError):
        engine.publish(s, CHEN, repository="DSpace Repository")
    # a reviewer may only send back documents already with reviewers
    with pytest.raises(ValidationError):
        engine.return_to_student(s, ANDERSON, confirm=True)
    with pytest.raises(ValidationError):
        engine.return_to_student(s, CHEN)
    with pytest.raises(ValidationError):
        engine.approve_to_admin(s, ANDERSON)
    with pytest.raises(NotFoundError):
        engine.approve_to_reviewer("nobody_here", CHEN)
    assert engine.store.current("jane_roe") == s


def test_submit_rules():
    engine = make_engine()
    engine.submit(JANE, PDF)
    with pytest.raises(ValidationError):
        engine.submit(JANE, PDF)
    with pytest.raises(ValidationError):
        engine.submit(BOB, b"", filename="bob.pdf")
    with pytest.raises(PermissionDeniedError):
        engine.submit(CHEN, PDF)
    # the uploaded name never picks the document a student writes to
    r = engine.submit(BOB, PDF, filename="jane_roe_Stage1.pdf")
    assert r.submission.filename == "bob_lee_Stage1.pdf" and r.submission.owner == "bob.lee"
    assert engine.store.current("jane_roe").owner == "jane.roe"
    assert len(engine.store.history("jane_roe")) == 1


def test_same_upload_name_from_two_students():
    engine = make_engine()
    a = engine.submit(JANE, PDF, filename="thesis.pdf").submission
    b = engine.submit(BOB, b"%PDF-1.4 other", filename="thesis.pdf").submission
    assert (a.filename, b.filename) == ("jane_roe_Stage1.pdf", "bob_lee_Stage1.pdf")
    assert a.title == b.title == "thesis"
    assert {x.filename for x in classify_for(engine.store.list_all(), CHEN, "to-review")} == {
        "jane_roe_Stage1.pdf", "bob_lee_Stage1.pdf",
    }


def test_resubmission_lands_in_sent_back_queue():
    engine = make_engine()
    s = engine.submit(JANE, PDF).submission
    s = engine.approve_to_reviewer(s, CHEN).submission
    engine.return_to_student(s, ANDERSON, confirm=True, notes="fix chapter 2")

    r = engine.submit(JANE, b"%PDF-1.4 revised")
    assert r.submission.stage == Stage.STAGE1
    assert r.submission.sent_back_to_student and r.submission.sent_back_by == "dr.anderson"
    assert r.audit_entry.notes == "Resubmitted by student"

    snapshot = engine.store.list_all()
    assert [x.filename for x in classify_for(snapshot, ANDERSON, "sent-back")] == ["jane_roe_Stage1.pdf"]
    assert [x.filename for x in classify_for(snapshot, CHEN, "to-review")] == ["jane_roe_Stage1.pdf"]


def test_undo_send_only_by_sender():
    engine = make_engine()
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    with pytest.raises(ValidationError):
        engine.undo_send_to_reviewer(s, MARTINEZ)
    r = engine.undo_send_to_reviewer(s, CHEN)
    assert r.submission.filename == "jane_roe_Stage1.pdf"
    assert not r.submission.sent_to_reviewer and r.submission.sent_by is None
    assert r.audit_entry.notes == "Undone by ms.chen and moved back to review queue"


def test_reviewer_returns_to_librarian_then_resend():
    engine = make_engine()
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    r = engine.return_to_librarian(s, ANDERSON)
    assert r.submission.stage == Stage.STAGE2 and r.submission.returned_from_review
    assert [x.filename for x in classify_for(engine.store.list_all(), CHEN, "returned")] == ["jane_roe_Stage2.pdf"]

    with pytest.raises(ValidationError):
        engine.approve_to_admin(r.submission, ANDERSON)
    again = engine.approve_to_reviewer(r.submission, MARTINEZ)
    assert not again.submission.returned_from_review
    assert again.submission.sent_by == "dr.martinez"
    # stale Stage2 versions are dropped on re-send
    assert [x.time for x in engine.store.history("jane_roe") if x.stage == Stage.STAGE2] == [again.submission.time]


def test_publish_requires_ready_flag():
    publisher = LocalPublisher()
    engine = make_engine(publisher=publisher)
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    s = engine.approve_to_admin(s, ANDERSON, ready_for_publication=False).submission
    assert s.stage == Stage.STAGE3 and s.approved_by == "dr.anderson"

    with pytest.raises(ValidationError):
        engine.publish(s, PATEL, repository="DSpace Repository")
    assert publisher.published == []

    s = engine.mark_ready_for_publication(s, PATEL).submission
    with pytest.raises(ValidationError):
        engine.mark_ready_for_publication(s, PATEL)

    r = engine.publish(s, PATEL, repository="DSpace Repository", doi="10.1234/jr", keywords=["ml", " ", "nlp"])
    p = r.submission
    assert p.stage == Stage.STAGE4 and p.filename == "jane_roe_Stage4.pdf"
    assert p.published_by == "admin.patel" and p.repository == "DSpace Repository"
    assert p.keywords == ["ml", "nlp"] and p.external_id == publisher.published[0]
    assert r.audit_entry.notes == "Published to DSpace Repository (DOI: 10.1234/jr)"
    assert r.notification.target_user == "jane.roe"


def test_publisher_failure_leaves_ledger_untouched():
    engine = make_engine(publisher=BrokenPublisher())
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    s = engine.approve_to_admin(s, ANDERSON).submission
    before = (len(engine.store.list_all()), len(engine.store.list_audit_log()))
    with pytest.raises(ExternalServiceError):
        engine.publish(s, PATEL)
    assert (len(engine.store.list_all()), len(engine.store.list_audit_log())) == before
    assert engine.store.current("jane_roe") == s


def test_replace_content_and_deadline():
    engine = make_engine()
    s = engine.submit(JANE, PDF).submission
    r = engine.replace_content(s, CHEN, b"%PDF-1.4 corrected")
    assert r.submission.stage == Stage.STAGE1 and r.submission.content_digest != s.content_digest
    assert engine.store.get_content(r.submission.content_digest) == b"%PDF-1.4 corrected"
    with pytest.raises(ValidationError):
        engine.replace_content(r.submission, ANDERSON, b"%PDF-1.4 x")

    d = engine.set_deadline(r.submission, CHEN, "2025-10-04")
    assert d.submission.deadline == "2025-10-04T00:00:00Z"
    with pytest.raises(ValidationError):
        engine.set_deadline(d.submission, CHEN, "next tuesday")
    cleared = engine.set_deadline(d.submission, CHEN, None)
    assert cleared.submission.deadline is None
    assert cleared.audit_entry.notes == "Deadline cleared"


def test_stage_change_clears_notes():
    notes = NotesCache()
    engine = make_engine(notes=notes)
    s = engine.submit(JANE, PDF).submission
    notes.set("jane_roe", "check the bibliography")
    engine.set_deadline(s, CHEN, "2025-10-04")
    assert notes.get("jane_roe") == "check the bibliography"
    engine.approve_to_reviewer("jane_roe", CHEN)
    assert notes.get("jane_roe") == ""


def test_unwritable_notes_do_not_fail_committed_transition(tmp_path: Path, caplog):
    notes = NotesCache(tmp_path / "missing_dir" / "notes.json")
    engine = make_engine(notes=notes)
    engine.submit(JANE, PDF)
    with caplog.at_level(logging.ERROR, logger="workflow.transitions"):
        r = engine.approve_to_reviewer("jane_roe", CHEN)
    assert r.submission.stage == Stage.STAGE2
    assert engine.store.current("jane_roe") == r.submission
    assert "Notes for jane_roe could not be cleared" in caplog.text


def test_clear_sent_history():
    engine = make_engine()
    engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN)
    engine.approve_to_reviewer(engine.submit(BOB, PDF).submission, MARTINEZ)
    removed = engine.clear_sent_history(CHEN)
    assert removed == 2
    assert engine.store.current("jane_roe") is None
    assert engine.store.current("bob_lee").sent_by == "dr.martinez"
    assert all(s.sent_by != "ms.chen" for s in engine.store.list_all())
    assert engine.store.list_audit_log()[-1].action == ActionKind.HISTORY_CLEARED
    with pytest.raises(PermissionDeniedError):
        engine.clear_sent_history(ANDERSON)


def test_clear_sent_history_after_publication_leaves_no_stale_version():
    engine = make_engine()
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    s = engine.approve_to_admin(s, ANDERSON).submission
    engine.publish(s, PATEL, repository="DSpace Repository")
    versions = len(engine.store.history("jane_roe"))

    assert engine.clear_sent_history(CHEN) == versions
    assert engine.store.current("jane_roe") is None
    assert engine.store.history("jane_roe") == []
    snapshot = engine.store.list_all()
    assert classify_for(snapshot, CHEN, "to-review") == []
    assert classify_for(snapshot, ANDERSON, "to-review") == []


def test_failed_publish_commit_logs_orphaned_deposit(caplog):
    backend = SwitchableBackend()
    publisher = LocalPublisher()
    ticks = count(1_700_000_000_000, 1000)
    engine = TransitionEngine(DocumentStore(backend), publisher=publisher, clock=lambda: next(ticks))
    s = engine.approve_to_reviewer(engine.submit(JANE, PDF).submission, CHEN).submission
    s = engine.approve_to_admin(s, ANDERSON).submission

    backend.fail = True
    with caplog.at_level(logging.ERROR, logger="workflow.transitions"):
        with pytest.raises(StorageError):
            engine.publish(s, PATEL)
    assert len(publisher.published) == 1
    orphan = [r for r in caplog.records if r.levelno == logging.ERROR and publisher.published[0] in r.getMessage()]
    assert orphan and "jane_roe_Stage3.pdf" in orphan[0].getMessage()
    assert engine.store.current("jane_roe") == s


def test_apply_dispatches_by_name():
    engine = make_engine()
    engine.submit(JANE, PDF)
    r = engine.apply("send_to_reviewer", "jane_roe_Stage1.pdf", CHEN)
    assert r.submission.stage == Stage.STAGE2
    r = engine.apply("return_to_reviewer_queue", "jane_roe", ANDERSON)
    assert r.submission.returned_from_review
    with pytest.raises(ValidationError):
        engine.apply("teleport", "jane_roe", CHEN)
