"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Every tunable knob of the site server lives in one dataclass.

=============================================================================
WHERE VALUES COME FROM
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION PRECEDENCE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                     │
    │   1. Command-line flags                                             │
    │      └── python -m siteserver --port 9000                           │
    │                                                                     │
    │   2. Environment variables                                          │
    │      └── SITE_PORT=9000 python -m siteserver                        │
    │                                                                     │
    │   3. Defaults declared below                                        │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

The CLI starts from ServerConfig.from_env() and then overwrites the fields
the user passed explicitly, so the precedence above falls out naturally.

=============================================================================
THE THREE LIMITS THAT MATTER
=============================================================================

    max_workers / queue_size   How many connections are served at once and
                               how many may wait. Past both: 503.

    rate_limit_*               Sliding window per client IP.
                               rate_limit_max_requests inside
                               rate_limit_window seconds. Past it: 429.

    timeout / connection_lifetime
                               How long a silent socket may hold a worker,
                               and the hard ceiling for any one connection.

=============================================================================
"""

import os
from dataclasses import dataclass
from typing import Optional


@dataclass
class ServerConfig:
    """
    Configuration for the site server.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK        host, port, backlog, buffer_size
    TIMEOUTS       timeout, connection_lifetime, keep_alive_timeout
    HTTP           keep_alive, max_keep_alive_requests, max_request_size
    WORKER POOL    max_workers, queue_size
    CONTENT        content_dir, error_dir, index_file, cache_max_age
    RATE LIMIT     rate_limit_window, rate_limit_max_requests
    CORS           cors_allow_origin
    LOGGING        log_level, log_format, access_log_file

    Example:
        config = ServerConfig(port=9000, content_dir="site")
        config.validate()
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "0.0.0.0"
    """Interface to bind. "0.0.0.0" listens everywhere (containers)."""

    port: int = 8000
    """TCP port to listen on. 0 asks the OS for a free port."""

    backlog: int = 128
    """Kernel accept queue length passed to listen()."""

    buffer_size: int = 8192
    """Bytes requested per recv() call."""

    # ─────────────────────────────────────────────────────────────────────
    # TIMEOUTS
    # ─────────────────────────────────────────────────────────────────────

    timeout: float = 30.0
    """
    Idle read timeout in seconds.
    A client that sends nothing for this long loses its connection
    and its worker slot.
    """

    connection_lifetime: float = 120.0
    """
    Hard ceiling on how long one connection may occupy the server,
    measured from the moment it was accepted. Enforced by the worker
    pool watchdog even if the worker is stuck in a write.
    """

    keep_alive_timeout: float = 5.0
    """Idle time allowed between requests on a persistent connection."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    """Honour HTTP/1.1 persistent connections."""

    max_keep_alive_requests: int = 100
    """Requests served on one connection before it is closed."""

    max_request_size: int = 1024 * 1024  # 1 MB
    """Upper bound for request head plus body. Larger requests get 413."""

    # ─────────────────────────────────────────────────────────────────────
    # WORKER POOL
    # ─────────────────────────────────────────────────────────────────────

    max_workers: int = 4
    """Number of connections handled concurrently."""

    queue_size: int = 64
    """
    Accepted connections allowed to wait for a free worker.
    When the queue is full new connections receive 503.
    """

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────

    content_dir: str = "public_html"
    """Root directory of the served site. Nothing outside it is reachable."""

    error_dir: Optional[str] = "server_assets"
    """
    Directory holding custom error pages (404.html, 500.html).
    Missing files fall back to built-in pages. None disables lookups.
    """

    index_file: str = "index.html"
    """Default document served for directory requests."""

    cache_max_age: int = 0
    """
    Cache-Control max-age for static files in seconds. 0 sends "no-cache"
    so browsers revalidate every time.
    """

    # ─────────────────────────────────────────────────────────────────────
    # RATE LIMIT
    # ─────────────────────────────────────────────────────────────────────

    rate_limit_window: float = 60.0
    """Length of the sliding window in seconds."""

    rate_limit_max_requests: int = 100
    """Requests one client IP may make inside the window."""

    # ─────────────────────────────────────────────────────────────────────
    # CORS
    # ─────────────────────────────────────────────────────────────────────

    cors_allow_origin: str = "*"
    """Value of Access-Control-Allow-Origin on every response."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    """Root logging level (DEBUG, INFO, WARNING, ERROR)."""

    log_format: str = "text"
    """Access log format: 'text' (Apache-like) or 'json'."""

    access_log_file: Optional[str] = "server.log"
    """
    File the access log is appended to, in addition to the console.
    None keeps the access log on the console only.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SERVER IDENTITY
    # ─────────────────────────────────────────────────────────────────────

    server_name: str = "SiteServer/1.0"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        SITE_HOST                     Bind address
        SITE_PORT                     Listen port
        SITE_WORKERS                  Worker pool capacity
        SITE_QUEUE_SIZE               Waiting connections before 503
        SITE_TIMEOUT                  Idle read timeout (seconds)
        SITE_CONNECTION_LIFETIME      Hard per-connection ceiling (seconds)
        SITE_CONTENT_DIR              Served directory
        SITE_ERROR_DIR                Custom error pages directory
        SITE_INDEX_FILE               Default document
        SITE_CACHE_MAX_AGE            Static Cache-Control max-age (seconds)
        SITE_RATE_LIMIT_WINDOW        Sliding window length (seconds)
        SITE_RATE_LIMIT_MAX_REQUESTS  Requests per window per client
        SITE_CORS_ORIGIN              Access-Control-Allow-Origin value
        SITE_LOG_LEVEL                Logging level
        SITE_LOG_FORMAT               text | json
        SITE_ACCESS_LOG               Access log file ("" disables)

        Unset variables keep the dataclass default.
        =====================================================================
        """
        defaults = cls()

        access_log = os.getenv("SITE_ACCESS_LOG", defaults.access_log_file)

        return cls(
            host=os.getenv("SITE_HOST", defaults.host),
            port=int(os.getenv("SITE_PORT", defaults.port)),
            max_workers=int(os.getenv("SITE_WORKERS", defaults.max_workers)),
            queue_size=int(os.getenv("SITE_QUEUE_SIZE", defaults.queue_size)),
            timeout=float(os.getenv("SITE_TIMEOUT", defaults.timeout)),
            connection_lifetime=float(
                os.getenv("SITE_CONNECTION_LIFETIME", defaults.connection_lifetime)
            ),
            content_dir=os.getenv("SITE_CONTENT_DIR", defaults.content_dir),
            error_dir=os.getenv("SITE_ERROR_DIR", defaults.error_dir) or None,
            index_file=os.getenv("SITE_INDEX_FILE", defaults.index_file),
            cache_max_age=int(os.getenv("SITE_CACHE_MAX_AGE", defaults.cache_max_age)),
            rate_limit_window=float(
                os.getenv("SITE_RATE_LIMIT_WINDOW", defaults.rate_limit_window)
            ),
            rate_limit_max_requests=int(
                os.getenv("SITE_RATE_LIMIT_MAX_REQUESTS", defaults.rate_limit_max_requests)
            ),
            cors_allow_origin=os.getenv("SITE_CORS_ORIGIN", defaults.cors_allow_origin),
            log_level=os.getenv("SITE_LOG_LEVEL", defaults.log_level),
            log_format=os.getenv("SITE_LOG_FORMAT", defaults.log_format),
            access_log_file=access_log or None,
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once at start-up so a bad value stops the server before
        it binds a port, not on the first request that needs it.

        Raises:
            ValueError: Describing the first invalid field found.
        """
        if not 0 <= self.port < 65536:
            raise ValueError(f"Invalid port: {self.port}. Must be 0-65535.")

        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")

        if self.queue_size < 0:
            raise ValueError("queue_size must be >= 0")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.keep_alive_timeout <= 0:
            raise ValueError("keep_alive_timeout must be > 0")

        if self.connection_lifetime <= 0:
            raise ValueError("connection_lifetime must be > 0")

        if self.cache_max_age < 0:
            raise ValueError("cache_max_age must be >= 0")

        if self.rate_limit_window <= 0:
            raise ValueError("rate_limit_window must be > 0")

        if self.rate_limit_max_requests < 1:
            raise ValueError("rate_limit_max_requests must be >= 1")

        if not self.index_file or "/" in self.index_file or self.index_file in (".", ".."):
            raise ValueError(f"index_file must be a plain file name, got {self.index_file!r}")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")

        if not os.path.isdir(self.content_dir):
            raise ValueError(f"content_dir does not exist: {self.content_dir}")


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# ServerConfig is the single source of truth for:
#
# - network binding and socket buffer sizes
# - idle, keep-alive and lifetime timeouts
# - worker pool capacity and waiting queue
# - content root, error page directory and default document
# - sliding-window rate limit
# - CORS origin and logging
#
# from_env() reads SITE_* variables; validate() fails fast at start-up.
# =============================================================================
