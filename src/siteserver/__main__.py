"""
=============================================================================
SITESERVER CLI
=============================================================================

    # Serve ./public_html on port 8000
    python -m siteserver

    # Another directory and port, 8 workers
    siteserver --content-dir ./site --port 8080 --workers 8

    # Tighter rate limit, JSON access log
    siteserver --rate-limit 20 --rate-window 10 --log-format json

Settings come from three places, later ones winning:

    ServerConfig defaults  →  SITE_* environment variables  →  flags
=============================================================================
"""

import argparse
import dataclasses
import sys
from typing import List, Optional

from . import __version__
from .config import ServerConfig
from .server import HTTPServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="siteserver",
        description="Static site server with per-client rate limiting and a visitor counter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  siteserver                                  # ./public_html on :8000
  siteserver -c ./site -p 8080                # other directory and port
  siteserver --rate-limit 20 --rate-window 10 # 20 requests per 10s per IP
  siteserver --access-log ""                  # no access log file
        """
    )

    # Every default is None so unset flags leave env/config values alone

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--host", "-H", help="Address to bind (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on (default: 8000)")

    # ─────────────────────────────────────────────────────────────────────
    # CONCURRENCY AND TIMEOUTS
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--workers", "-w", type=int, dest="max_workers",
                        help="Worker threads (default: 4)")
    parser.add_argument("--queue-size", type=int,
                        help="Connections allowed to wait for a worker (default: 64)")
    parser.add_argument("--timeout", type=float,
                        help="Idle read timeout in seconds (default: 30)")
    parser.add_argument("--lifetime", type=float, dest="connection_lifetime",
                        help="Maximum seconds one connection may last (default: 120)")

    # ─────────────────────────────────────────────────────────────────────
    # CONTENT
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--content-dir", "-c",
                        help="Directory to serve (default: public_html)")
    parser.add_argument("--error-dir", "-e",
                        help="Directory holding 404.html / 500.html (default: server_assets)")
    parser.add_argument("--index", dest="index_file",
                        help="Default document name (default: index.html)")
    parser.add_argument("--cache-max-age", type=int,
                        help="Cache-Control max-age for static files in seconds (default: 0, no-cache)")

    # ─────────────────────────────────────────────────────────────────────
    # RATE LIMITING AND CORS
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--rate-window", type=float, dest="rate_limit_window",
                        help="Rate limit window in seconds (default: 60)")
    parser.add_argument("--rate-limit", type=int, dest="rate_limit_max_requests",
                        help="Requests per client per window (default: 100)")
    parser.add_argument("--cors-origin", dest="cors_allow_origin",
                        help="Access-Control-Allow-Origin value (default: *)")

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────
    parser.add_argument("--log-level", "-l",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                        help="Logging level (default: INFO)")
    parser.add_argument("--log-format", choices=["text", "json"],
                        help="Access log format (default: text)")
    parser.add_argument("--access-log", dest="access_log_file",
                        help='Access log file, "" to disable (default: server.log)')

    parser.add_argument("--version", "-v", action="version",
                        version=f"siteserver {__version__}")

    return parser


def build_config(args: argparse.Namespace) -> ServerConfig:
    """Environment-based config with the given flags applied on top."""
    config = ServerConfig.from_env()

    overrides = {
        name: value
        for name, value in vars(args).items()
        if value is not None
    }
    for name in ("access_log_file", "error_dir"):
        if overrides.get(name) == "":
            overrides[name] = None

    return dataclasses.replace(config, **overrides)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        server = HTTPServer(build_config(args))
    except ValueError as e:
        print(f"siteserver: {e}", file=sys.stderr)
        return 2

    try:
        server.run()
    except OSError as e:
        print(f"siteserver: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
