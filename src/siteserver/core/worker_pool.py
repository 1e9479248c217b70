"""
=============================================================================
BOUNDED WORKER POOL
=============================================================================

A fixed number of worker threads, a bounded number of waiting tasks, and
a watchdog that reclaims workers stuck past their deadline.

=============================================================================
CAPACITY
=============================================================================

    max_workers = 4, queue_size = 2

    ┌──────────┬──────────┬──────────┬──────────┐   ┌──────┬──────┐
    │ worker 0 │ worker 1 │ worker 2 │ worker 3 │   │  q0  │  q1  │
    │   busy   │   busy   │   busy   │   busy   │   │ wait │ wait │
    └──────────┴──────────┴──────────┴──────────┘   └──────┴──────┘
                                                         │
    7th connection: submit() returns False ──────────────┘
    → the dispatcher answers 503 and closes. Nothing is dropped silently.

The bound is enforced with an outstanding-task counter rather than the
queue's own maxsize, so queue_size=0 really means "no waiting at all"
(queue.Queue(maxsize=0) would be unbounded).

=============================================================================
DEADLINES AND THE WATCHDOG
=============================================================================

A Python thread cannot be killed from outside. What can be done is to
break the I/O it is blocked on. Every task carries a deadline and an
on_timeout callback; for a connection the callback is Connection.abort(),
which shuts the socket down.

    watchdog, every reap_interval:
        for each busy worker:
            task past deadline?  → task.expire()  → on_timeout()
                                   (at most once per task)

    worker, blocked in recv()/send():
        socket shut down → call returns / raises → task unwinds
        → worker back to IDLE → slot available again

A task whose deadline passes while it is still queued is never run, and
neither is one still queued at shutdown. Both get on_timeout and then
on_expired, which for a connection closes the socket.
=============================================================================
"""

import threading
import queue
import time
import logging
from typing import Any, Callable, List, Optional
from dataclasses import dataclass, field
from enum import Enum


logger = logging.getLogger(__name__)


class WorkerState(Enum):
    IDLE = "idle"
    BUSY = "busy"
    STOPPED = "stopped"


@dataclass
class Task:
    """
    A deferred call with an optional deadline.

    Attributes:
        func: Callable to run.
        args: Positional arguments.
        kwargs: Keyword arguments.
        deadline: time.monotonic() value after which the task is overdue.
        on_timeout: Called once when the task is overdue, from the
                    watchdog or from the worker that dequeues it late.
        on_expired: Called instead of func when the task is dropped
                    before it starts. Releases whatever func would have.
        submitted_at: time.monotonic() at submission.
    """

    func: Callable[..., Any]
    args: tuple = ()
    kwargs: dict = field(default_factory=dict)
    deadline: Optional[float] = None
    on_timeout: Optional[Callable[[], None]] = None
    on_expired: Optional[Callable[[], None]] = None
    submitted_at: float = field(default_factory=time.monotonic)

    _expired: bool = field(default=False, repr=False)
    _expire_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def overdue(self, now: float) -> bool:
        return self.deadline is not None and now >= self.deadline

    @property
    def expired(self) -> bool:
        return self._expired

    def expire(self) -> None:
        """Run on_timeout, once, however many threads call this."""
        with self._expire_lock:
            if self._expired:
                return
            self._expired = True

        if self.on_timeout is None:
            return
        try:
            self.on_timeout()
        except Exception:
            logger.exception("Task timeout callback failed")

    def discard(self) -> None:
        """Drop a task that never started: expire it, then run on_expired."""
        self.expire()
        if self.on_expired is None:
            return
        try:
            self.on_expired()
        except Exception:
            logger.exception("Task cleanup callback failed")


class Worker(threading.Thread):
    """
    Worker thread pulling tasks off the shared queue.

    Loop:
        get task (1s poll) → None? exit → overdue? discard, skip
        → run → report completion → repeat

    Exceptions from a task are logged and counted; they never end the
    thread.
    """

    def __init__(
        self,
        pool: "WorkerPool",
        task_queue: queue.Queue,
        worker_id: int,
        poll_interval: float = 1.0
    ):
        super().__init__(name=f"Worker-{worker_id}", daemon=True)
        self.pool = pool
        self.task_queue = task_queue
        self.worker_id = worker_id
        self.poll_interval = poll_interval

        self.state = WorkerState.IDLE
        self.current_task: Optional[Task] = None
        self._shutdown = threading.Event()

        self.tasks_completed = 0
        self.tasks_failed = 0
        self.tasks_expired = 0

    def run(self):
        logger.debug(f"Worker {self.worker_id} started")

        while not self._shutdown.is_set():
            try:
                task = self.task_queue.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            if task is None:
                self.task_queue.task_done()
                break

            try:
                self._execute_task(task)
            finally:
                self.task_queue.task_done()
                self.pool._task_finished()

        self.state = WorkerState.STOPPED
        logger.debug(f"Worker {self.worker_id} stopped")

    def _execute_task(self, task: Task):
        start_time = time.monotonic()

        # ─────── stale check: waited in the queue past the deadline ───────
        if task.overdue(start_time):
            logger.warning(
                f"Task expired in queue after {start_time - task.submitted_at:.2f}s"
            )
            task.discard()
            self.tasks_expired += 1
            return

        self.current_task = task
        self.state = WorkerState.BUSY
        try:
            task.func(*task.args, **task.kwargs)
            self.tasks_completed += 1
            logger.debug(
                f"Worker {self.worker_id} finished task in "
                f"{time.monotonic() - start_time:.3f}s"
            )
        except Exception as e:
            self.tasks_failed += 1
            logger.exception(
                f"Worker {self.worker_id} task failed after "
                f"{time.monotonic() - start_time:.3f}s: {e}"
            )
        finally:
            if task.expired:
                self.tasks_expired += 1
            self.current_task = None
            self.state = WorkerState.IDLE

    def shutdown(self):
        self._shutdown.set()


class WorkerPool:
    """
    Fixed-size thread pool with bounded admission.

    Usage:
        pool = WorkerPool(max_workers=4, queue_size=64)
        pool.start()

        accepted = pool.submit(
            worker.process, args=(conn,),
            deadline=conn.deadline, on_timeout=conn.abort,
        )
        if not accepted:
            ...  # 503

        pool.available_slots   # idle workers right now
        pool.shutdown()
    """

    def __init__(
        self,
        max_workers: int = 4,
        queue_size: int = 64,
        reap_interval: float = 0.5,
        poll_interval: float = 1.0
    ):
        """
        Args:
            max_workers: Worker threads, all started by start().
            queue_size: Tasks allowed to wait when every worker is busy.
            reap_interval: Seconds between watchdog scans.
            poll_interval: Worker queue poll; bounds how long a stopped
                           worker takes to notice shutdown.
        """
        if max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if queue_size < 0:
            raise ValueError("queue_size must be >= 0")

        self.max_workers = max_workers
        self.queue_size = queue_size
        self.reap_interval = reap_interval
        self.poll_interval = poll_interval

        self._task_queue: queue.Queue = queue.Queue()
        self._workers: List[Worker] = []
        self._lock = threading.Lock()
        self._outstanding = 0
        self._rejected = 0

        self._started = False
        self._shutdown = False
        self._watchdog: Optional[threading.Thread] = None
        self._stop_watchdog = threading.Event()

    @property
    def capacity(self) -> int:
        """Running plus waiting tasks the pool will hold."""
        return self.max_workers + self.queue_size

    def start(self):
        if self._started:
            return

        logger.info(
            f"Starting worker pool: {self.max_workers} workers, "
            f"{self.queue_size} queue slots"
        )

        for worker_id in range(self.max_workers):
            worker = Worker(self, self._task_queue, worker_id, self.poll_interval)
            self._workers.append(worker)
            worker.start()

        self._stop_watchdog.clear()
        self._watchdog = threading.Thread(
            target=self._watch, name="WorkerPool-watchdog", daemon=True
        )
        self._watchdog.start()

        self._started = True
        self._shutdown = False

    def submit(
        self,
        func: Callable[..., Any],
        args: tuple = (),
        kwargs: Optional[dict] = None,
        deadline: Optional[float] = None,
        on_timeout: Optional[Callable[[], None]] = None,
        on_expired: Optional[Callable[[], None]] = None
    ) -> bool:
        """
        Queue a task without blocking.

        Returns:
            True if accepted, False if every worker and queue slot is
            taken.

        Raises:
            RuntimeError: Pool not started, or shutting down.
        """
        if not self._started:
            raise RuntimeError("Worker pool not started")
        if self._shutdown:
            raise RuntimeError("Worker pool is shutting down")

        with self._lock:
            if self._outstanding >= self.capacity:
                self._rejected += 1
                return False
            self._outstanding += 1

        self._task_queue.put(Task(
            func=func,
            args=args,
            kwargs=kwargs or {},
            deadline=deadline,
            on_timeout=on_timeout,
            on_expired=on_expired,
        ))
        return True

    def _task_finished(self):
        with self._lock:
            self._outstanding -= 1

    def _watch(self):
        """Watchdog loop: expire overdue tasks on busy workers."""
        while not self._stop_watchdog.wait(self.reap_interval):
            now = time.monotonic()
            for worker in self._workers:
                task = worker.current_task
                if task is not None and not task.expired and task.overdue(now):
                    logger.warning(
                        f"Worker {worker.worker_id} over deadline by "
                        f"{now - task.deadline:.2f}s, reclaiming"
                    )
                    task.expire()

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None):
        """
        Stop the pool.

        Args:
            wait: Let queued and running tasks finish first.
            timeout: Upper bound for that wait. Tasks still running
                     afterwards (or all of them when wait=False) are
                     expired so their connections close.
        """
        if not self._started:
            return

        logger.info("Shutting down worker pool...")
        self._shutdown = True

        if wait:
            deadline = time.monotonic() + timeout if timeout is not None else None
            while self.outstanding:
                if deadline is not None and time.monotonic() > deadline:
                    logger.warning("Worker pool shutdown timed out, aborting tasks")
                    break
                time.sleep(0.05)

        # Whatever is still queued will never start
        while True:
            try:
                task = self._task_queue.get_nowait()
            except queue.Empty:
                break
            task.discard()
            self._task_finished()
            self._task_queue.task_done()

        for worker in self._workers:
            task = worker.current_task
            if task is not None:
                task.expire()

        for _ in self._workers:
            self._task_queue.put(None)

        for worker in self._workers:
            worker.shutdown()
            worker.join(timeout=2.0)

        self._stop_watchdog.set()
        if self._watchdog is not None:
            self._watchdog.join(timeout=2.0)

        self._workers.clear()
        self._started = False
        logger.info("Worker pool shutdown complete")

    # =========================================================================
    # MONITORING
    # =========================================================================

    @property
    def busy_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.BUSY)

    @property
    def idle_workers(self) -> int:
        return sum(1 for w in self._workers if w.state == WorkerState.IDLE)

    @property
    def available_slots(self) -> int:
        """Workers free to start a new connection right now."""
        return self.max_workers - self.busy_workers if self._started else 0

    @property
    def outstanding(self) -> int:
        """Tasks accepted and not yet finished (running or queued)."""
        with self._lock:
            return self._outstanding

    @property
    def queued(self) -> int:
        return self._task_queue.qsize()

    @property
    def stats(self) -> dict:
        return {
            "workers": {
                "total": len(self._workers),
                "busy": self.busy_workers,
                "idle": self.idle_workers,
            },
            "tasks": {
                "outstanding": self.outstanding,
                "queued": self.queued,
                "completed": sum(w.tasks_completed for w in self._workers),
                "failed": sum(w.tasks_failed for w in self._workers),
                "expired": sum(w.tasks_expired for w in self._workers),
                "rejected": self._rejected,
            },
        }


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# WorkerPool
#   - max_workers threads started up front, no autoscaling
#   - submit() never blocks; False means "answer 503"
#   - outstanding counter bounds running + waiting tasks exactly
#   - watchdog expires overdue tasks; on_timeout breaks their I/O
#   - available_slots / stats for observing capacity
# =============================================================================
