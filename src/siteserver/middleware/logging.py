"""
=============================================================================
ACCESS LOGGING
=============================================================================

One line per request on the "siteserver.access" logger, which the server
can also route to an access log file (server.log by default).

    TEXT (default):
    ┌─────────────────────────────────────────────────────────────────────┐
    │ 10.0.0.7 - - [19/Oct/2026:08:15:02 +0000] "GET /" 200 1234 0.84ms   │
    │ 10.0.0.7 - - [19/Oct/2026:08:15:03 +0000] "GET /x" 404 512 0.31ms   │
    │ 10.0.0.9 - - [19/Oct/2026:08:15:03 +0000] "GET /" 429 19 0.02ms     │
    └─────────────────────────────────────────────────────────────────────┘

    JSON:
        {"request_id": "a1b2c3d4", "method": "GET", "path": "/",
         "client_ip": "10.0.0.7", "status_code": 200, ...}

Each logged response also gets an X-Request-ID header carrying the id
from the log line, so a client report can be matched to its entry.
=============================================================================
"""

import time
import json
import uuid
import logging
from typing import Iterable, Optional
from dataclasses import asdict, dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("siteserver.access")


@dataclass
class RequestLog:
    """One access log entry."""

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        entry = asdict(self)
        entry["duration_ms"] = round(self.duration_ms, 2)
        return entry

    def to_text(self) -> str:
        target = f"{self.path}?{self.query}" if self.query else self.path
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {target}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Times each request and writes an access log entry.

    Add it first so it is outermost and sees the final response,
    CORS headers and all:

        pipeline.add(LoggingMiddleware(log_format="json"))
        pipeline.add(CORSMiddleware())
    """

    def __init__(
        self,
        log_format: str = "text",
        include_request_id: bool = True,
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            log_format: "text" (Apache-style) or "json".
            include_request_id: Add X-Request-ID to responses.
            log_level: Level the entries are emitted at.
            skip_paths: Paths never logged.
        """
        if log_format not in ("text", "json"):
            raise ValueError(f"Unknown log format: {log_format!r}")

        self.log_format = log_format
        self.include_request_id = include_request_id
        self.log_level = log_level
        self.skip_paths = set(skip_paths or ())

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        request_id = str(uuid.uuid4())[:8]
        start_time = time.perf_counter()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        duration_ms = (time.perf_counter() - start_time) * 1000

        if request.path not in self.skip_paths:
            self.emit(RequestLog(
                request_id=request_id,
                method=request.method,
                path=request.path,
                query=request.query,
                client_ip=request.client_ip,
                user_agent=request.user_agent or "-",
                status_code=int(response.status),
                content_length=response.content_length,
                duration_ms=duration_ms,
                timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            ))

        if self.include_request_id:
            response.headers["X-Request-ID"] = request_id

        return response

    def emit(self, entry: RequestLog) -> None:
        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())
