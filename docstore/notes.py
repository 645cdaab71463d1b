from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Dict, Optional

from shared.errors import StorageError


class NotesCache:
    """Free-text notes keyed by base identity, kept beside the ledger."""

    def __init__(self, path: Optional[Path] = None) -> None:
        self._path = path
        self._lock = threading.Lock()
        self._notes: Dict[str, str] = {}
        if path is not None and path.exists():
            try:
                self._notes = dict(json.loads(path.read_text(encoding="utf-8")))
            except (ValueError, TypeError):
                # notes are a convenience cache; a broken file starts empty
                self._notes = {}

    def _save(self) -> None:
        if self._path is None:
            return
        tmp = self._path.with_suffix(".tmp")
        try:
            tmp.write_text(json.dumps(self._notes, ensure_ascii=False, indent=2), encoding="utf-8")
            tmp.replace(self._path)
        except OSError as e:
            raise StorageError(str(e)) from e

    def get(self, base: str) -> str:
        with self._lock:
            return self._notes.get(base, "")

    def set(self, base: str, text: str) -> None:
        with self._lock:
            if text:
                self._notes[base] = text
            else:
                self._notes.pop(base, None)
            self._save()

    def clear(self, base: Optional[str] = None) -> None:
        with self._lock:
            if base is None:
                self._notes.clear()
            else:
                self._notes.pop(base, None)
            self._save()
