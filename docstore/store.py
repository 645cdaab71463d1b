from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional

from shared.errors import ConflictError, NotFoundError, StorageError
from shared.models import AuditLogEntry, Submission
from shared.paths import data_layout

from .backends import JsonFileBackend, Ledger, MemoryBackend, PersistentStore
from .storage.cas import content_digest, get_bytes, put_bytes

logger = logging.getLogger(__name__)


def latest_version(versions: List[Submission], base: str) -> Optional[Submission]:
    """Greatest ``time`` wins; on a tie the later ledger position wins."""
    best: Optional[Submission] = None
    for s in versions:
        if s.base_identity != base:
            continue
        if best is None or s.time >= best.time:
            best = s
    return best


class DocumentStore:
    """
    Ordered, append-only ledger of submission versions and audit entries.

    Holds no workflow rules. Every write replaces the full ledger in the
    backend first and only then swaps the in-memory copy, so a failed save
    leaves both untouched.
    """

    def __init__(self, backend: PersistentStore, blobs_dir: Optional[Path] = None) -> None:
        self._backend = backend
        self._blobs_dir = blobs_dir
        self._mem_blobs: Dict[str, bytes] = {}
        self._write_lock = threading.RLock()
        self._registry_lock = threading.Lock()
        self._identity_locks: Dict[str, threading.Lock] = {}
        self._ledger = backend.load()

    @classmethod
    def open(cls, data_root: Path) -> "DocumentStore":
        layout = data_layout(data_root)
        return cls(JsonFileBackend(layout["ledger"]), layout["blobs"])

    @classmethod
    def in_memory(cls) -> "DocumentStore":
        return cls(MemoryBackend())

    # ─────────────────────────────────────────────────────────────────────
    # Ledger
    # ─────────────────────────────────────────────────────────────────────
    def _persist(self, new: Ledger) -> None:
        try:
            self._backend.save(new)
        except StorageError:
            raise
        except OSError as e:
            raise StorageError(str(e)) from e
        self._ledger = new

    def append(self, version: Submission) -> None:
        with self._write_lock:
            new = self._ledger.copy()
            new.submissions.append(version)
            self._persist(new)

    def list_all(self) -> List[Submission]:
        with self._write_lock:
            return list(self._ledger.submissions)

    def append_audit_log(self, entry: AuditLogEntry) -> None:
        with self._write_lock:
            new = self._ledger.copy()
            new.audit_log.append(entry)
            self._persist(new)

    def list_audit_log(self) -> List[AuditLogEntry]:
        with self._write_lock:
            return list(self._ledger.audit_log)

    def current(self, base: str) -> Optional[Submission]:
        with self._write_lock:
            return latest_version(self._ledger.submissions, base)

    def history(self, base: str) -> List[Submission]:
        with self._write_lock:
            return [s for s in self._ledger.submissions if s.base_identity == base]

    def reload(self) -> None:
        """Re-read the backend, picking up writes made by other processes."""
        with self._write_lock:
            self._ledger = self._backend.load()

    # ─────────────────────────────────────────────────────────────────────
    # Transactions
    # ─────────────────────────────────────────────────────────────────────
    def _identity_lock(self, base: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._identity_locks.get(base)
            if lock is None:
                lock = self._identity_locks[base] = threading.Lock()
            return lock

    @contextmanager
    def locked(self, base: str) -> Iterator[None]:
        """Serialise read-validate-commit sequences for one base identity."""
        lock = self._identity_lock(base)
        with lock:
            yield

    def commit(self, version: Submission, entry: AuditLogEntry, *, expected_time: Optional[int],
               drop: Optional[Callable[[Submission], bool]] = None) -> None:
        """
        Append a new version and its audit entry in one write.

        Compare-and-swap: ``expected_time`` must equal the current version's
        time for the base identity (None when no version exists yet).
        ``drop`` removes older versions of the same base identity.
        """
        base = version.base_identity
        with self._write_lock:
            cur = latest_version(self._ledger.submissions, base)
            cur_time = cur.time if cur else None
            if cur_time != expected_time:
                raise ConflictError(base, expected_time, cur_time)
            subs = [
                s for s in self._ledger.submissions
                if not (drop is not None and s.base_identity == base and drop(s))
            ]
            subs.append(version)
            self._persist(Ledger(subs, self._ledger.audit_log + [entry]))

    def purge(self, predicate: Callable[[Submission], bool],
              make_entry: Optional[Callable[[int], AuditLogEntry]] = None, *,
              whole_identity: bool = False) -> int:
        """
        Hard-delete matching versions; the optional audit entry goes in the same write.

        With ``whole_identity`` the predicate is asked about each base identity's
        current version only, and every version of a matching identity goes, so no
        older version can surface as the new current one.
        """
        with self._write_lock:
            subs = self._ledger.submissions
            if whole_identity:
                bases = {s.base_identity for s in subs}
                doomed = {b for b in bases if predicate(latest_version(subs, b))}
                keep = [s for s in subs if s.base_identity not in doomed]
            else:
                keep = [s for s in subs if not predicate(s)]
            removed = len(subs) - len(keep)
            audit = list(self._ledger.audit_log)
            if make_entry is not None:
                audit.append(make_entry(removed))
            self._persist(Ledger(keep, audit))
        logger.info("Purged %d submission version(s)", removed)
        return removed

    # ─────────────────────────────────────────────────────────────────────
    # Blobs
    # ─────────────────────────────────────────────────────────────────────
    def put_content(self, data: bytes) -> str:
        if self._blobs_dir is None:
            digest = content_digest(data)
            self._mem_blobs[digest] = bytes(data)
            return digest
        return put_bytes(self._blobs_dir, data)

    def get_content(self, digest: str) -> bytes:
        if self._blobs_dir is None:
            try:
                return self._mem_blobs[digest]
            except KeyError:
                raise NotFoundError(f"Blob not found: {digest}") from None
        return get_bytes(self._blobs_dir, digest)
