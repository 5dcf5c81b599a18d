"""Server lifecycle state: draining flag and in-flight worker tracking."""

import logging
import threading

from blobstore.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(logging.getLogger("blobstore.lifecycle"), {})


class ServerLifecycle:
    """Tracks connection workers so shutdown can wait for in-flight requests."""

    def __init__(self) -> None:
        self._workers_changed = threading.Condition()
        self._draining = threading.Event()
        self._workers: set[threading.Thread] = set()

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._draining.is_set()

    def is_draining(self) -> bool:
        """Check if the server is in draining mode."""
        return self._draining.is_set()

    def register_worker(self, thread: threading.Thread) -> None:
        """Start tracking a connection worker."""
        with self._workers_changed:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Stop tracking a connection worker."""
        with self._workers_changed:
            self._workers.discard(thread)
            self._workers_changed.notify_all()

    def has_worker(self, thread: threading.Thread) -> bool:
        """Return True when the worker is currently tracked."""
        with self._workers_changed:
            return thread in self._workers

    def active_worker_count(self) -> int:
        """Return the number of currently tracked worker threads."""
        with self._workers_changed:
            return len(self._workers)

    def begin_draining(self) -> None:
        """Refuse new work from now on."""
        self._draining.set()
        LIFECYCLE_LOGGER.info("Beginning graceful shutdown", extra={"event": "draining"})

    def wait_for_workers(self, timeout: float) -> bool:
        """Block until every tracked worker has finished or ``timeout`` elapses."""
        with self._workers_changed:
            self._workers = {worker for worker in self._workers if worker.is_alive()}
            finished = self._workers_changed.wait_for(
                lambda: not self._workers, timeout=timeout
            )
            remaining = len(self._workers)
        if not finished:
            LIFECYCLE_LOGGER.warning(
                "Shutdown timeout exceeded",
                extra={"event": "shutdown_timeout", "remaining_workers": remaining},
            )
        return finished
