from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from docstore.notes import NotesCache
from docstore.store import DocumentStore
from shared.errors import StorageError
from shared.models import User
from workflow.queues import QueueFilter

from .data import SubmissionInfo
from .scan import scan_queue

logger = logging.getLogger(__name__)

RowsCallback = Callable[[List[SubmissionInfo]], None]


class QueuePoller:
    """
    Re-scan one staff tab every ``interval`` seconds on a daemon thread
    (the "Auto-rescan" toggle). Each tick reloads the ledger, so writes made
    by other processes show up.
    """

    def __init__(self, store: DocumentStore, user: User, queue: str, callback: RowsCallback, *,
                 interval: float = 90.0, filters: Optional[QueueFilter] = None,
                 notes: Optional[NotesCache] = None) -> None:
        self._store = store
        self._user = user
        self._callback = callback
        self._interval = interval
        self._notes = notes
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.queue = queue
        self.filters = filters

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def poll_once(self) -> List[SubmissionInfo]:
        self._store.reload()
        rows = scan_queue(self._store, self._user, self.queue, filters=self.filters, notes=self._notes)
        self._callback(rows)
        return rows

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.poll_once()
            except StorageError as e:
                logger.error("Auto-rescan failed: %s", e)
            self._stop.wait(self._interval)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"poller-{self.queue}", daemon=True)
        self._thread.start()
        logger.info("Auto-rescan on (every %ss) for %s", self._interval, self.queue)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Auto-rescan off for %s", self.queue)
