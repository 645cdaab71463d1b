from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.models import Submission


@dataclass
class SubmissionInfo:
    submission: Submission  # the version this row was built from; pass it back to act on it
    student: str
    filename: str
    title: str
    stage: str
    status: str  # "Submitted" | "In review" | "Approved" | ...
    queue: str
    submitted_ms: Optional[int]
    returned_ms: Optional[int]
    when_label: str
    due_iso: Optional[str]
    due_label: str
    overdue: bool  # computed from due_iso
    notes: str = ""

    @property
    def base(self) -> str:
        return self.submission.base_identity
