from __future__ import annotations

import random
import string
import time
from dataclasses import asdict, dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.paths import base_identity


class Stage(str, Enum):
    STAGE0 = 'Stage0'  # returned to student
    STAGE1 = 'Stage1'  # awaiting librarian
    STAGE2 = 'Stage2'  # with reviewer
    STAGE3 = 'Stage3'  # approved, awaiting admin
    STAGE4 = 'Stage4'  # published

    @property
    def number(self) -> int:
        return int(self.value[len('Stage'):])

    @classmethod
    def from_number(cls, n: int) -> 'Stage':
        return cls(f'Stage{n}')

    @property
    def label(self) -> str:
        return _STAGE_LABELS[self]


_STAGE_LABELS = {
    Stage.STAGE0: 'Returned',
    Stage.STAGE1: 'Submitted',
    Stage.STAGE2: 'In review',
    Stage.STAGE3: 'Approved',
    Stage.STAGE4: 'Published',
}


class Role(str, Enum):
    STUDENT = 'student'
    LIBRARIAN = 'librarian'
    REVIEWER = 'reviewer'
    ADMIN = 'admin'


class ActionKind(str, Enum):
    SUBMITTED = 'SUBMITTED'
    SENT_TO_REVIEWER = 'SENT_TO_REVIEWER'
    RETURNED_FROM_REVIEW = 'RETURNED_FROM_REVIEW'
    SENT_BACK = 'SENT_BACK'
    UNDO_SEND_TO_REVIEWER = 'UNDO_SEND_TO_REVIEWER'
    APPROVED_FOR_PUBLICATION = 'APPROVED_FOR_PUBLICATION'
    MARKED_READY = 'MARKED_READY'
    PUBLISHED = 'PUBLISHED'
    FILE_REPLACED = 'FILE_REPLACED'
    DEADLINE_SET = 'DEADLINE_SET'
    HISTORY_CLEARED = 'HISTORY_CLEARED'


@dataclass(frozen=True)
class User:
    """An authenticated portal user; ``role`` is already resolved upstream."""

    username: str
    role: Role
    display_name: str = ''
    email: str = ''


@dataclass(frozen=True)
class Submission:
    """One immutable version of a logical submission.

    The ledger keeps every version; the one with the greatest ``time`` for a
    base identity is the current one.
    """

    filename: str
    stage: Stage
    owner: str
    time: int  # epoch ms of the mutation that produced this version
    title: str = ''
    sent_by: Optional[str] = None
    sent_back_by: Optional[str] = None
    approved_by: Optional[str] = None
    returned_from_review: bool = False
    sent_to_reviewer: bool = False
    sent_back_to_student: bool = False
    ready_for_publication: bool = False
    deadline: Optional[str] = None
    content_digest: Optional[str] = None  # sha256 of the blob in the store
    size: int = 0
    mimetype: str = 'application/pdf'
    published_by: Optional[str] = None
    published_at: Optional[str] = None
    repository: Optional[str] = None
    doi: Optional[str] = None
    keywords: List[str] = field(default_factory=list)
    external_id: Optional[str] = None

    @property
    def base_identity(self) -> str:
        return base_identity(self.filename)

    def evolve(self, **changes: Any) -> 'Submission':
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['stage'] = self.stage.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Submission':
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs['stage'] = Stage(kwargs['stage'])
        kwargs['time'] = int(kwargs['time'])
        kwargs['keywords'] = list(kwargs.get('keywords') or [])
        return cls(**kwargs)


@dataclass(frozen=True)
class AuditLogEntry:
    """Append-only record of one administrative action."""

    time: int
    actor: str
    action: ActionKind
    filename: str
    notes: str = ''
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['action'] = self.action.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuditLogEntry':
        return cls(
            time=int(data['time']),
            actor=data.get('actor', ''),
            action=ActionKind(data['action']),
            filename=data.get('filename', ''),
            notes=data.get('notes', ''),
            extra=dict(data.get('extra') or {}),
        )


@dataclass
class Notification:
    id: str
    filename: str
    target_user: str
    target_stage: Stage
    time: int
    message: str
    read: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d['target_stage'] = self.target_stage.value
        return d

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Notification':
        return cls(
            id=data['id'],
            filename=data['filename'],
            target_user=data['target_user'],
            target_stage=Stage(data['target_stage']),
            time=int(data['time']),
            message=data.get('message', ''),
            read=bool(data.get('read', False)),
        )


def now_ms() -> int:
    return int(time.time() * 1000)


def new_notification_id(ts: Optional[int] = None) -> str:
    """``notification_<ms>_<9 random base36 chars>``."""
    suffix = ''.join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f'notification_{ts if ts is not None else now_ms()}_{suffix}'
