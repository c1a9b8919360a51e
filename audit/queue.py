"""
audit/queue.py -- Fire-and-forget delivery of log entries to a writer.

Request handlers call submit() and return immediately. A single daemon
worker thread drains the bounded queue and hands each entry to the writer
(AuditStore.write in production).

  submit() never blocks. When the queue is full the entry is dropped and a
  warning is logged; the request that produced it is unaffected.

  A writer exception is logged with its traceback and the worker moves on to
  the next entry.

  close() posts a stop marker behind everything already queued and joins the
  worker, so entries accepted before shutdown are written unless the join
  times out.
"""

from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable

logger = logging.getLogger("tenantiam.audit")

_STOP = object()


class LogDispatcher:
    def __init__(self, writer: Callable[[Any], None], maxsize: int = 1000, enabled: bool = True) -> None:
        self._writer = writer
        self._queue: queue.Queue = queue.Queue(maxsize=maxsize)
        self.enabled = enabled
        self.dropped = 0
        self._dropped_lock = threading.Lock()
        self._closed = False
        self._worker = threading.Thread(target=self._run, name="tenantiam-log-dispatcher", daemon=True)
        if enabled:
            self._worker.start()

    def submit(self, entry: Any) -> bool:
        """Queue entry for writing. Returns False if it was dropped."""
        if not self.enabled or self._closed:
            return False
        try:
            self._queue.put_nowait(entry)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1
                dropped = self.dropped
            logger.warning("Log queue full, dropping %s (dropped so far: %d)", type(entry).__name__, dropped)
            return False
        return True

    def flush(self) -> None:
        """Block until every queued entry has been handed to the writer."""
        if self.enabled and self._worker.is_alive():
            self._queue.join()

    def close(self, timeout: float = 5.0) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._worker.is_alive():
            return
        # Blocking put: the stop marker must land behind already accepted entries.
        self._queue.put(_STOP)
        self._worker.join(timeout)
        if self._worker.is_alive():
            logger.warning("Log dispatcher did not drain within %.1fs", timeout)

    def _run(self) -> None:
        while True:
            entry = self._queue.get()
            try:
                if entry is _STOP:
                    return
                self._writer(entry)
            except Exception:
                logger.exception("Failed to write %s", type(entry).__name__)
            finally:
                self._queue.task_done()
