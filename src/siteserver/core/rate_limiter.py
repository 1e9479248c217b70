"""
=============================================================================
SLIDING-WINDOW RATE LIMITER
=============================================================================

Caps how many requests one client IP may make within a rolling window.

=============================================================================
THE ALGORITHM
=============================================================================

Each client keeps a queue of the times its admitted requests arrived.

    window = 60s, cap = 3

    t=0   admit   [0]
    t=10  admit   [0, 10]
    t=20  admit   [0, 10, 20]
    t=30  REJECT  [0, 10, 20]       3 in the last 60s; retry in 30s
    t=60  admit   [10, 20, 60]      0 fell out of the window
    t=61  REJECT  [10, 20, 60]      retry in 9s

Before every decision the timestamps older than the window are dropped
from the front of the queue. What remains is exactly the number of
requests in the last `window` seconds, so the cap is never exceeded at
any instant. A fixed window ("100 per calendar minute") would allow up
to 2x the cap around a minute boundary.

Rejected requests are not recorded. A client hammering the server while
limited does not extend its own penalty.

=============================================================================
LOCKING
=============================================================================

    ┌────────────────────────────────────────────────────────────────────┐
    │  RateLimiter                                                       │
    │                                                                    │
    │   _lock (map lock)  guards the dict itself: insert new client,     │
    │         │           sweep out idle clients                         │
    │         ▼                                                          │
    │   _clients = {                                                     │
    │       "10.0.0.7":  _ClientWindow(lock, deque[...])                 │
    │       "10.0.0.9":  _ClientWindow(lock, deque[...])                 │
    │   }                 each entry's own lock guards its deque:        │
    │                     purge, compare, append                         │
    └────────────────────────────────────────────────────────────────────┘

Two different clients only meet on the map lock, held for one dict
lookup. Two requests from the same client serialize on that client's
lock, which is what makes "purge, compare, append" a single step.

=============================================================================
MEMORY
=============================================================================

An IP that made one request an hour ago does not need an entry. Every
`sweep_interval` seconds, the next admit() call removes entries whose
timestamps have all expired. A sweep skips any entry currently locked by
an in-flight admission; a later sweep picks it up.

An admission can look up an entry just before the sweep removes it. The
removed entry is marked evicted, and the admission, seeing the flag once
it holds the entry lock, starts over with a fresh entry. No admitted
request is ever recorded in an orphaned deque.
=============================================================================
"""

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Optional
import logging
import threading
import time


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateDecision:
    """
    Outcome of one admission check.

    Attributes:
        allowed: Whether the request may proceed.
        limit: Configured cap.
        remaining: Requests still available in the current window.
        retry_after: Seconds until the oldest recorded request leaves the
                     window (0.0 when allowed).
    """

    allowed: bool
    limit: int
    remaining: int
    retry_after: float = 0.0

    def __bool__(self) -> bool:
        return self.allowed


@dataclass
class _ClientWindow:
    """Admitted-request timestamps for one client, oldest first."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    timestamps: Deque[float] = field(default_factory=deque)
    evicted: bool = False

    def purge(self, cutoff: float) -> None:
        """Drop timestamps at or before cutoff."""
        timestamps = self.timestamps
        while timestamps and timestamps[0] <= cutoff:
            timestamps.popleft()


class RateLimiter:
    """
    Per-client sliding-window limiter.

    Usage:
        limiter = RateLimiter(window_seconds=60, max_requests=100)

        decision = limiter.admit(request.client_ip)
        if not decision.allowed:
            ...  # 429, Retry-After: decision.retry_after
    """

    def __init__(
        self,
        window_seconds: float = 60.0,
        max_requests: int = 100,
        sweep_interval: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            window_seconds: Length of the sliding window.
            max_requests: Admissions allowed per client per window.
            sweep_interval: Seconds between idle-client sweeps. Defaults
                            to the window length.
            clock: Monotonic time source, replaceable in tests.
        """
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")

        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self.sweep_interval = sweep_interval if sweep_interval is not None else window_seconds
        self._clock = clock

        self._clients: Dict[str, _ClientWindow] = {}
        self._lock = threading.Lock()
        self._last_sweep = clock()

    @property
    def tracked_clients(self) -> int:
        """Number of client entries currently held in memory."""
        with self._lock:
            return len(self._clients)

    def admit(self, client_key: str, now: Optional[float] = None) -> RateDecision:
        """
        Decide whether a request from client_key may proceed.

        Admitted requests are recorded; rejected ones are not.

        Args:
            client_key: Client identifier, normally the peer IP.
            now: Current time from the same clock; read from the clock
                 when omitted.

        Returns:
            RateDecision. Truthy when allowed.
        """
        if now is None:
            now = self._clock()
        cutoff = now - self.window_seconds

        while True:
            window = self._window_for(client_key, now)

            with window.lock:
                if window.evicted:
                    # Lost a race with the sweep; use the replacement entry
                    continue

                window.purge(cutoff)
                count = len(window.timestamps)

                if count >= self.max_requests:
                    retry_after = max(0.0, window.timestamps[0] + self.window_seconds - now)
                    logger.debug(
                        f"Rate limit hit for {client_key}: {count}/{self.max_requests}, "
                        f"retry in {retry_after:.1f}s"
                    )
                    return RateDecision(
                        allowed=False,
                        limit=self.max_requests,
                        remaining=0,
                        retry_after=retry_after,
                    )

                window.timestamps.append(now)
                return RateDecision(
                    allowed=True,
                    limit=self.max_requests,
                    remaining=self.max_requests - count - 1,
                )

    def _window_for(self, client_key: str, now: float) -> _ClientWindow:
        """Fetch or create the client's entry, sweeping when due."""
        with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)

            window = self._clients.get(client_key)
            if window is None:
                window = _ClientWindow()
                self._clients[client_key] = window
            return window

    def _sweep(self, now: float) -> None:
        """
        Remove clients with no timestamps left in the window.

        Caller holds the map lock.
        """
        cutoff = now - self.window_seconds
        removed = 0

        for key, window in list(self._clients.items()):
            if not window.lock.acquire(blocking=False):
                continue
            try:
                window.purge(cutoff)
                if not window.timestamps:
                    window.evicted = True
                    del self._clients[key]
                    removed += 1
            finally:
                window.lock.release()

        self._last_sweep = now
        if removed:
            logger.debug(f"Rate limiter swept {removed} idle clients, {len(self._clients)} remain")

    def reset(self, client_key: Optional[str] = None) -> None:
        """
        Forget recorded requests.

        Args:
            client_key: One client to clear, or None for all.
        """
        with self._lock:
            if client_key is None:
                for window in self._clients.values():
                    window.evicted = True
                self._clients.clear()
            else:
                window = self._clients.pop(client_key, None)
                if window is not None:
                    window.evicted = True


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# RateLimiter.admit(key, now) → RateDecision
#
# - Sliding window: purge expired, compare with cap, record if admitted
# - Map lock for insert and sweep only; per-client lock for the decision
# - Lazy sweep keeps memory proportional to recently active clients
# - Evicted flag makes admission safe against a concurrent sweep
# =============================================================================
