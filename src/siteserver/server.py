"""
=============================================================================
SITE SERVER
=============================================================================

Ties the components together.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   SocketServer ──accept──► _handle_connection                       │
    │                                 │                                   │
    │                   pool full ◄───┤                                   │
    │                   503, close    │ submit(deadline, on_timeout)      │
    │                                 ▼                                   │
    │                            WorkerPool                               │
    │                                 │                                   │
    │                                 ▼                                   │
    │                         ConnectionWorker ──► RateLimiter            │
    │                                 │                                   │
    │                                 ▼                                   │
    │          LoggingMiddleware → CORSMiddleware → Router                │
    │                                                   │                 │
    │                       /visitor-count ◄────────────┼──► static files │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Shared state (rate limiter, visitor counter) is created once here and
passed to the components that need it. Nothing lives in module globals.

    server = HTTPServer(ServerConfig(content_dir="public_html"))
    server.run()          # blocks; Ctrl+C or SIGTERM to stop
=============================================================================
"""

import logging
import threading
from typing import Optional, Tuple

from .config import ServerConfig
from .core import Connection, ConnectionWorker, RateLimiter, SocketServer, WorkerPool
from .handlers import (
    ErrorPages,
    PathResolver,
    StaticFileHandler,
    VisitorCounter,
    VisitorCountHandler,
)
from .http import HTTPStatus, RequestParser, Router, error_response
from .middleware import (
    CORSConfig,
    CORSMiddleware,
    LoggingMiddleware,
    Middleware,
    MiddlewarePipeline,
)


logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class HTTPServer:
    """
    Static site server with rate limiting and a visitor counter.

    Usage:
        server = HTTPServer(ServerConfig(port=8080, content_dir="site"))
        server.run()

        # In another thread, or from a test
        server.stop()

    A limiter or counter can be passed in to share them between servers
    or to inspect them from tests.
    """

    def __init__(
        self,
        config: Optional[ServerConfig] = None,
        limiter: Optional[RateLimiter] = None,
        counter: Optional[VisitorCounter] = None,
    ):
        """
        Args:
            config: Server configuration; defaults are used if omitted.
            limiter: Rate limiter; built from the config if omitted.
            counter: Visitor counter; starts at 0 if omitted.

        Raises:
            ValueError: The configuration is invalid.
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._limiter = limiter or RateLimiter(
            window_seconds=self.config.rate_limit_window,
            max_requests=self.config.rate_limit_max_requests,
        )
        self._counter = counter or VisitorCounter()

        # ─────── handlers and routing ───────
        error_pages = ErrorPages(self.config.error_dir)
        static = StaticFileHandler(
            PathResolver(self.config.content_dir, self.config.index_file),
            error_pages,
            counter=self._counter,
            cache_max_age=self.config.cache_max_age,
        )
        self._router = Router(fallback=static.handle, on_error=error_pages)
        self._router.add_route(
            VisitorCountHandler.path,
            VisitorCountHandler(self._counter).handle,
            name="visitor_count",
        )

        # ─────── middleware ───────
        self._cors = CORSMiddleware(CORSConfig(allow_origin=self.config.cors_allow_origin))
        self._middleware = MiddlewarePipeline().use(
            LoggingMiddleware(log_format=self.config.log_format),
            self._cors,
        )

        # ─────── concurrency and networking ───────
        self._pool = WorkerPool(
            max_workers=self.config.max_workers,
            queue_size=self.config.queue_size,
        )
        self._socket_server = SocketServer(self.config)
        self._worker: Optional[ConnectionWorker] = None
        self._access_handler: Optional[logging.Handler] = None

    def use(self, middleware: Middleware) -> "HTTPServer":
        """Add middleware inside the built-in ones. Call before run()."""
        self._middleware.add(middleware)
        return self

    @property
    def router(self) -> Router:
        return self._router

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter

    @property
    def counter(self) -> VisitorCounter:
        return self._counter

    @property
    def pool(self) -> WorkerPool:
        return self._pool

    @property
    def address(self) -> Tuple[str, int]:
        """Bound (host, port) once listening."""
        return self._socket_server.address

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def run(self):
        """Serve until stop() or a shutdown signal. Blocks."""
        self._setup_logging()

        self._worker = ConnectionWorker(
            self.config,
            self._middleware.wrap(self._router.handle),
            RequestParser(max_request_size=self.config.max_request_size),
            self._limiter,
            pipeline=self._middleware,
            decorate=self._cors.apply,
        )
        self._pool.start()

        logger.info(
            f"Serving {self.config.content_dir} with {self.config.max_workers} workers, "
            f"rate limit {self.config.rate_limit_max_requests}/"
            f"{self.config.rate_limit_window:g}s per client"
        )

        try:
            self._socket_server.start(self._handle_connection)
        except KeyboardInterrupt:
            logger.info("Received keyboard interrupt")
        finally:
            self._shutdown()

    def wait_until_ready(self, timeout: Optional[float] = None) -> bool:
        """Block until the server is accepting connections."""
        return self._socket_server.wait_until_ready(timeout)

    def stop(self):
        """Ask a running server to stop. Returns immediately."""
        self._socket_server.shutdown()

    def _setup_logging(self):
        level = getattr(logging, self.config.log_level.upper(), logging.INFO)
        logging.basicConfig(level=level, format=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
        logging.getLogger("siteserver").setLevel(level)

        if self.config.access_log_file and self._access_handler is None:
            handler = logging.FileHandler(self.config.access_log_file, encoding="utf-8")
            handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
            logging.getLogger("siteserver.access").addHandler(handler)
            self._access_handler = handler

    def _shutdown(self):
        logger.info("Shutting down server...")
        self._pool.shutdown(wait=True, timeout=self.config.timeout)

        if self._access_handler is not None:
            logging.getLogger("siteserver.access").removeHandler(self._access_handler)
            self._access_handler.close()
            self._access_handler = None

        logger.info("Server stopped")

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def _handle_connection(self, conn: Connection):
        """Hand conn to a worker, or turn it away with 503."""
        try:
            accepted = self._pool.submit(
                self._worker.process,
                args=(conn,),
                deadline=conn.deadline,
                on_timeout=conn.abort,
                on_expired=conn.close,
            )
        except RuntimeError:
            accepted = False

        if not accepted:
            logger.warning(f"[{conn.id}] All workers busy, rejecting {conn.client_ip}")
            # Runs on the accept thread: the write and close happen elsewhere
            threading.Thread(
                target=self._reject,
                args=(conn,),
                name=f"reject-{conn.id}",
                daemon=True,
            ).start()

    def _reject(self, conn: Connection):
        """Send 503 and close. Bounded by the send timeout and the close drain."""
        response = self._cors.apply(
            error_response(HTTPStatus.SERVICE_UNAVAILABLE, close=True)
        )
        with conn:
            conn.send(response.to_bytes(self.config.server_name))


def create_app(config: Optional[ServerConfig] = None) -> HTTPServer:
    """Build a server from config, or from SITE_* environment variables."""
    return HTTPServer(config or ServerConfig.from_env())
