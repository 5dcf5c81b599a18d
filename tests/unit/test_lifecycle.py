"""Tests for server lifecycle worker tracking and draining."""

import logging
import threading

from blobstore.lifecycle.state import ServerLifecycle


def test_draining_flags():
    """begin_draining flips both stop checks."""
    lifecycle = ServerLifecycle()
    assert not lifecycle.should_stop()
    assert not lifecycle.is_draining()

    lifecycle.begin_draining()

    assert lifecycle.should_stop()
    assert lifecycle.is_draining()


def test_register_and_cleanup_worker():
    """Workers are tracked until cleaned up."""
    lifecycle = ServerLifecycle()
    worker = threading.Thread(target=lambda: None)

    lifecycle.register_worker(worker)
    assert lifecycle.has_worker(worker)
    assert lifecycle.active_worker_count() == 1

    lifecycle.cleanup_worker(worker)
    assert not lifecycle.has_worker(worker)
    assert lifecycle.active_worker_count() == 0


def test_wait_for_workers_returns_when_workers_finish():
    """Waiting ends as soon as the last in-flight worker cleans up."""
    lifecycle = ServerLifecycle()
    release = threading.Event()

    def work():
        release.wait(timeout=5)
        lifecycle.cleanup_worker(threading.current_thread())

    worker = threading.Thread(target=work)
    lifecycle.register_worker(worker)
    worker.start()

    threading.Timer(0.1, release.set).start()

    assert lifecycle.wait_for_workers(timeout=5) is True
    assert lifecycle.active_worker_count() == 0
    worker.join(timeout=5)


def test_wait_for_workers_ignores_dead_threads():
    """Threads that died without cleaning up do not block shutdown."""
    lifecycle = ServerLifecycle()
    worker = threading.Thread(target=lambda: None)
    worker.start()
    worker.join()
    lifecycle.register_worker(worker)

    assert lifecycle.wait_for_workers(timeout=0.1) is True


def test_wait_for_workers_times_out(caplog):
    """A worker still running past the grace period is reported."""
    caplog.set_level(logging.WARNING, logger="blobstore")
    lifecycle = ServerLifecycle()
    release = threading.Event()
    worker = threading.Thread(target=release.wait, args=(5,))
    lifecycle.register_worker(worker)
    worker.start()
    try:
        assert lifecycle.wait_for_workers(timeout=0.1) is False
    finally:
        release.set()
        worker.join(timeout=5)

    records = [r for r in caplog.records if getattr(r, "event", None) == "shutdown_timeout"]
    assert records and records[0].remaining_workers == 1
