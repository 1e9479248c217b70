"""
=============================================================================
VISITOR COUNTER
=============================================================================

A process-wide page-view counter and the endpoint that reports it.

=============================================================================
WHAT COUNTS AS A VISIT
=============================================================================

    ┌───────────────────────────────────────────┬──────────────┐
    │ Request                                   │ Increments?  │
    ├───────────────────────────────────────────┼──────────────┤
    │ GET /               (→ index.html)        │     yes      │
    │ GET /index.html                           │     yes      │
    │ GET /blog/          (→ blog/index.html)   │     yes      │
    │ GET /style.css, /app.js, /logo.png        │     no       │
    │ HEAD /                                    │     no       │
    │ GET /missing        (404)                 │     no       │
    │ any request answered 429                  │     no       │
    │ GET /visitor-count                        │     no       │
    └───────────────────────────────────────────┴──────────────┘

A page load pulls in a stylesheet, scripts and images, and the page's own
script polls /visitor-count. Counting only the default document means one
page load is one visit. The static handler decides; this module only
counts.

=============================================================================
CONCURRENCY
=============================================================================

Every worker thread shares one VisitorCounter. "count += 1" is a read,
an add and a store; two threads can interleave between the read and the
store and lose an increment. The lock makes the whole step atomic, and
the returned value is the count as of that increment.

The count lives in memory only and starts at zero on every start-up.
=============================================================================
"""

import threading
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder
from ..http.status_codes import HTTPStatus


logger = logging.getLogger(__name__)


class VisitorCounter:
    """
    Thread-safe monotonically increasing counter.

    Usage:
        counter = VisitorCounter()
        counter.increment_and_read()   # 1
        counter.read()                 # 1
    """

    def __init__(self, initial: int = 0):
        if initial < 0:
            raise ValueError("initial count must be >= 0")
        self._count = initial
        self._lock = threading.Lock()

    def increment_and_read(self) -> int:
        """Add one visit and return the new total."""
        with self._lock:
            self._count += 1
            return self._count

    def read(self) -> int:
        """Current total without changing it."""
        with self._lock:
            return self._count

    def __repr__(self) -> str:
        return f"<VisitorCounter count={self.read()}>"


class VisitorCountHandler:
    """
    GET /visitor-count

    Responds with the current count as text/plain, e.g. "1024". Reading
    the count never changes it.
    """

    path = "/visitor-count"

    def __init__(self, counter: VisitorCounter):
        self.counter = counter

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        count = self.counter.read()
        logger.debug(f"Visitor count requested by {request.client_ip}: {count}")
        return (ResponseBuilder()
            .status(HTTPStatus.OK)
            .text(str(count))
            .no_cache()
            .build())
