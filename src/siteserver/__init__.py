"""
=============================================================================
SITESERVER - Static Site Server with Rate Limiting
=============================================================================

Serves a directory of static files over HTTP/1.1 from a fixed pool of
worker threads, with a per-client sliding-window rate limit, CORS
headers on every response, and a visitor counter exposed at
/visitor-count.

=============================================================================
PACKAGE STRUCTURE
=============================================================================

    siteserver/
    ├── __main__.py          # CLI (python -m siteserver)
    ├── server.py            # HTTPServer: wires everything together
    ├── config.py            # ServerConfig dataclass, SITE_* env vars
    ├── core/
    │   ├── socket_server.py # listening socket, accept loop
    │   ├── connection.py    # one client socket, timeouts, close
    │   ├── worker.py        # per-connection request loop
    │   ├── worker_pool.py   # bounded pool with deadline watchdog
    │   └── rate_limiter.py  # sliding-window limiter per client
    ├── http/
    │   ├── request.py       # request parsing
    │   ├── response.py      # response building
    │   ├── router.py        # exact-path routing, fallback, preflight
    │   ├── status_codes.py
    │   └── mime_types.py
    ├── middleware/
    │   ├── base.py          # Middleware, MiddlewarePipeline
    │   ├── logging.py       # access log
    │   └── cors.py          # CORS headers
    └── handlers/
        ├── static.py        # PathResolver, StaticFileHandler
        ├── visitors.py      # VisitorCounter, /visitor-count
        └── errors.py        # custom 404 / 500 pages

=============================================================================
QUICK START
=============================================================================

    from siteserver import HTTPServer, ServerConfig

    server = HTTPServer(ServerConfig(content_dir="public_html", port=8000))
    server.run()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .server import HTTPServer, create_app
from .core import RateLimiter, WorkerPool
from .handlers import PathResolver, VisitorCounter

__all__ = [
    "__version__",
    "HTTPServer",
    "ServerConfig",
    "create_app",
    "RateLimiter",
    "WorkerPool",
    "PathResolver",
    "VisitorCounter",
]
