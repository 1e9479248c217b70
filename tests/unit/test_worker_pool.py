"""
Unit tests for the bounded worker pool.
"""

import socket
import threading
import time

import pytest

from siteserver.core.connection import Connection
from siteserver.core.worker_pool import WorkerPool


def wait_for(condition, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return condition()


@pytest.fixture
def make_pool():
    pools = []

    def make(**kwargs) -> WorkerPool:
        kwargs.setdefault("reap_interval", 0.05)
        kwargs.setdefault("poll_interval", 0.1)
        pool = WorkerPool(**kwargs)
        pool.start()
        pools.append(pool)
        return pool

    yield make

    for pool in pools:
        pool.shutdown(wait=False)


class TestWorkerPool:

    def test_runs_tasks(self, make_pool):
        pool = make_pool(max_workers=2, queue_size=2)
        done = threading.Event()
        results = []

        def task(value):
            results.append(value)
            done.set()

        assert pool.submit(task, args=(42,)) is True
        assert done.wait(2.0)
        assert results == [42]

    def test_submit_before_start(self):
        pool = WorkerPool(max_workers=1)
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

    def test_submit_after_shutdown(self, make_pool):
        pool = make_pool(max_workers=1)
        pool.shutdown()
        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)

    @pytest.mark.parametrize("kwargs", [{"max_workers": 0}, {"queue_size": -1}])
    def test_invalid_sizes(self, kwargs):
        with pytest.raises(ValueError):
            WorkerPool(**kwargs)

    def test_rejects_when_full(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=1)
        release = threading.Event()

        assert pool.submit(release.wait, args=(5.0,))
        assert pool.submit(lambda: None)       # waits in the queue
        assert not pool.submit(lambda: None)   # nothing left
        assert pool.stats["tasks"]["rejected"] == 1

        release.set()
        assert wait_for(lambda: pool.outstanding == 0)
        assert pool.submit(lambda: None)

    def test_zero_queue_means_no_waiting(self, make_pool):
        pool = make_pool(max_workers=2, queue_size=0)
        release = threading.Event()

        assert pool.submit(release.wait, args=(5.0,))
        assert pool.submit(release.wait, args=(5.0,))
        assert not pool.submit(lambda: None)
        release.set()

    def test_available_slots(self, make_pool):
        pool = make_pool(max_workers=3, queue_size=0)
        started = threading.Event()
        release = threading.Event()

        def task():
            started.set()
            release.wait(5.0)

        assert pool.available_slots == 3
        pool.submit(task)
        assert started.wait(2.0)
        assert pool.available_slots == 2

        release.set()
        assert wait_for(lambda: pool.available_slots == 3)

    def test_failing_task_does_not_kill_worker(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=2)
        done = threading.Event()

        def broken():
            raise RuntimeError("boom")

        pool.submit(broken)
        pool.submit(done.set)

        assert done.wait(2.0)
        assert wait_for(lambda: pool.stats["tasks"]["failed"] == 1)


class TestDeadlines:

    def test_watchdog_fires_on_timeout(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=0)
        unblock = threading.Event()

        accepted = pool.submit(
            unblock.wait, args=(5.0,),
            deadline=time.monotonic() + 0.2,
            on_timeout=unblock.set,
        )
        assert accepted

        # on_timeout released the task, freeing the worker
        assert wait_for(lambda: pool.outstanding == 0, timeout=2.0)
        assert pool.stats["tasks"]["expired"] == 1

    def test_on_timeout_called_once(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=0)
        calls = []
        finish = threading.Event()

        def slow():
            finish.wait(0.5)

        pool.submit(slow, deadline=time.monotonic() + 0.05, on_timeout=lambda: calls.append(1))

        assert wait_for(lambda: pool.outstanding == 0, timeout=2.0)
        assert calls == [1]

    def test_expired_in_queue_never_runs(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=1)
        release = threading.Event()
        ran = []
        expired = threading.Event()
        server_sock, client_sock = socket.socketpair()
        conn = Connection(socket=server_sock, address=("127.0.0.1", 5000))

        pool.submit(release.wait, args=(5.0,))
        pool.submit(
            lambda: ran.append(True),
            deadline=time.monotonic() + 0.1,
            on_timeout=expired.set,
            on_expired=conn.close,
        )

        time.sleep(0.3)
        release.set()

        assert expired.wait(2.0)
        assert wait_for(lambda: pool.outstanding == 0)
        assert ran == []
        assert conn.is_closed
        assert server_sock.fileno() == -1
        client_sock.settimeout(2.0)
        assert client_sock.recv(10) == b""
        client_sock.close()

    def test_shutdown_discards_queued_tasks(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=2)
        unblock = threading.Event()
        started = threading.Event()
        discarded = []

        def task():
            started.set()
            unblock.wait(5.0)

        pool.submit(task, on_timeout=unblock.set)
        assert started.wait(2.0)
        pool.submit(lambda: None, on_expired=lambda: discarded.append("a"))
        pool.submit(lambda: None, on_expired=lambda: discarded.append("b"))

        pool.shutdown(wait=False)

        assert sorted(discarded) == ["a", "b"]
        assert pool.outstanding == 0

    def test_shutdown_expires_running_tasks(self, make_pool):
        pool = make_pool(max_workers=1, queue_size=0)
        unblock = threading.Event()
        started = threading.Event()

        def task():
            started.set()
            unblock.wait(5.0)

        pool.submit(task, on_timeout=unblock.set)
        assert started.wait(2.0)

        begin = time.monotonic()
        pool.shutdown(wait=True, timeout=0.2)

        assert unblock.is_set()
        assert time.monotonic() - begin < 3.0
