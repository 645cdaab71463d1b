from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass
class InboxItem:
    base: str
    filename: str
    label: str              # human label, e.g. "Returned" / "In review"
    when_label: str         # "submitted …" | "returned …"
    due_iso: Optional[str]  # UTC ISO or None
    due_label: str          # localised text or ""
    overdue: bool
    can_resubmit: bool      # Stage0: the student may upload a new file
    unread: int = 0         # unread notifications about this document
