from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from shared.errors import CorruptLedgerError, StorageError
from shared.models import AuditLogEntry, Submission

logger = logging.getLogger(__name__)

LEDGER_FORMAT = 1


@dataclass
class Ledger:
    """Full persisted state: every submission version plus the audit log."""

    submissions: List[Submission] = field(default_factory=list)
    audit_log: List[AuditLogEntry] = field(default_factory=list)

    def copy(self) -> "Ledger":
        return Ledger(list(self.submissions), list(self.audit_log))

    def to_dict(self) -> dict:
        return {
            "format": LEDGER_FORMAT,
            "submissions": [s.to_dict() for s in self.submissions],
            "audit_log": [e.to_dict() for e in self.audit_log],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ledger":
        return cls(
            submissions=[Submission.from_dict(d) for d in data.get("submissions", [])],
            audit_log=[AuditLogEntry.from_dict(d) for d in data.get("audit_log", [])],
        )


class PersistentStore(ABC):
    """Swappable backing for the Document Store: whole-ledger load/save."""

    @abstractmethod
    def load(self) -> Ledger:
        pass

    @abstractmethod
    def save(self, ledger: Ledger) -> None:
        """Replace the stored ledger entirely or not at all."""
        pass


class MemoryBackend(PersistentStore):
    def __init__(self, ledger: Ledger | None = None) -> None:
        self._ledger = ledger.copy() if ledger else Ledger()
        self.saves = 0

    def load(self) -> Ledger:
        return self._ledger.copy()

    def save(self, ledger: Ledger) -> None:
        self._ledger = ledger.copy()
        self.saves += 1


class JsonFileBackend(PersistentStore):
    """
    One JSON document holding both lists. Writes go to a sibling .tmp file
    which then replaces the ledger, so readers see the old or the new ledger.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> Ledger:
        if not self.path.exists():
            return Ledger()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise ValueError("ledger root must be an object")
            return Ledger.from_dict(raw)
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Ledger %s is corrupt: %s", self.path, e)
            raise CorruptLedgerError(f"Ledger file is unreadable: {self.path}") from e

    def save(self, ledger: Ledger) -> None:
        data = json.dumps(ledger.to_dict(), ensure_ascii=False, indent=2)
        tmp = self.path.with_suffix(".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_text(data, encoding="utf-8")
            tmp.replace(self.path)
        except OSError as e:
            logger.error("Could not write ledger %s: %s", self.path, e)
            raise StorageError(f"Could not write ledger {self.path}: {e}") from e
