"""
=============================================================================
CORE SERVER COMPONENTS
=============================================================================

Networking and concurrency underneath the HTTP layer.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  SocketServer      accept loop on the listening socket              │
    └───────────────────────────────┬─────────────────────────────────────┘
                                    │ Connection
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  WorkerPool        fixed workers, bounded queue, deadline watchdog  │
    │                    full → 503                                       │
    └───────────────────────────────┬─────────────────────────────────────┘
                                    │ worker thread
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  ConnectionWorker  read → parse → RateLimiter → handler → send      │
    │                    keep-alive loop, then close                      │
    └─────────────────────────────────────────────────────────────────────┘
=============================================================================
"""

from .connection import Connection, ConnectionState, IncompleteRequest, RequestTooLarge
from .rate_limiter import RateDecision, RateLimiter
from .socket_server import SocketServer
from .worker import ConnectionWorker
from .worker_pool import WorkerPool

__all__ = [
    "Connection",
    "ConnectionState",
    "IncompleteRequest",
    "RequestTooLarge",
    "RateDecision",
    "RateLimiter",
    "SocketServer",
    "ConnectionWorker",
    "WorkerPool",
]
