"""
Tests for the background sync worker.
"""

import threading
import time

from helix_sync.core.errors import SyncFailure
from helix_sync.sync.background import BackgroundSync


class TestBackgroundSync:
    def test_runs_on_request(self):
        ran = threading.Event()
        worker = BackgroundSync(sync_fn=ran.set, interval_seconds=None)
        worker.start()
        try:
            assert worker.is_running
            worker.request_sync()
            assert ran.wait(timeout=5)
        finally:
            worker.stop()
        assert not worker.is_running

    def test_runs_periodically(self):
        calls = []
        done = threading.Event()

        def sync():
            calls.append(1)
            if len(calls) >= 2:
                done.set()

        worker = BackgroundSync(sync_fn=sync, interval_seconds=0.01)
        worker.start()
        try:
            assert done.wait(timeout=5)
        finally:
            worker.stop()

    def test_failures_do_not_kill_worker(self, log_messages):
        calls = []
        second = threading.Event()

        def sync():
            calls.append(1)
            if len(calls) == 1:
                raise SyncFailure("backend down", retryable=True)
            if len(calls) == 2:
                raise RuntimeError("unexpected")
            second.set()

        worker = BackgroundSync(sync_fn=sync, interval_seconds=None)
        worker.start()
        try:
            for _ in range(3):
                worker.request_sync()
                # wait until the loop has consumed the request
                for _ in range(500):
                    if not worker._wake_event.is_set():
                        break
                    time.sleep(0.01)
            assert second.wait(timeout=5)
        finally:
            worker.stop()

        assert any("WARNING" in m and "backend down" in m for m in log_messages)
        assert any("ERROR" in m and "unexpected" in m for m in log_messages)

    def test_start_twice_is_noop(self):
        worker = BackgroundSync(sync_fn=lambda: None, interval_seconds=None)
        worker.start()
        try:
            first = worker._thread
            worker.start()
            assert worker._thread is first
        finally:
            worker.stop()

    def test_stop_without_start(self):
        BackgroundSync(sync_fn=lambda: None).stop()
