"""
=============================================================================
CONNECTION WORKER
=============================================================================

Runs one accepted connection from first byte to close, on a pool thread.

    ┌──────────────────────────────────────────────────────────────────┐
    │  read_request()      408 on silence, 400 partial, 413 too big    │
    │        │                                                         │
    │        ▼                                                         │
    │  parser.parse()      400 malformed, 505 bad version              │
    │        │                                                         │
    │        ▼                                                         │
    │  limiter.admit(ip) ── rejected ──► 429 (logged, CORS, no files)  │
    │        │                                                         │
    │        ▼                                                         │
    │  handler(request)    middleware pipeline around the router       │
    │        │                                                         │
    │        ▼                                                         │
    │  send head, then body or file stream (HEAD: head only)           │
    │        │                                                         │
    │        ▼                                                         │
    │  keep-alive?  yes → back to read_request()   no → close          │
    └──────────────────────────────────────────────────────────────────┘

The rate check happens before routing, so a limited client never makes
the server touch the filesystem.
=============================================================================
"""

import math
import logging
from typing import Callable, Optional

from .connection import Connection, ConnectionState, IncompleteRequest, RequestTooLarge
from .rate_limiter import RateDecision, RateLimiter
from ..config import ServerConfig
from ..http.request import HTTPParseError, HTTPRequest, RequestParser
from ..http.response import HTTPResponse, error_response, text_response
from ..http.status_codes import HTTPStatus
from ..middleware.base import MiddlewarePipeline


logger = logging.getLogger(__name__)


Handler = Callable[[HTTPRequest], HTTPResponse]


class ConnectionWorker:
    """
    Per-connection request loop.

    One instance is shared by all pool threads; per-connection state
    lives on the Connection.

    Usage:
        worker = ConnectionWorker(config, pipeline.wrap(router.handle),
                                  RequestParser(), limiter, pipeline,
                                  decorate=cors.apply)
        pool.submit(worker.process, args=(conn,))
    """

    def __init__(
        self,
        config: ServerConfig,
        handler: Handler,
        parser: RequestParser,
        limiter: RateLimiter,
        pipeline: Optional[MiddlewarePipeline] = None,
        decorate: Optional[Callable[[HTTPResponse], HTTPResponse]] = None,
    ):
        """
        Args:
            config: Server configuration.
            handler: Serves admitted requests, usually the router wrapped
                     in the middleware pipeline.
            parser: Request parser.
            limiter: Rate limiter consulted once per request.
            pipeline: Wraps the 429 responder so limited requests are
                      logged and decorated like any other.
            decorate: Applied to responses sent before a request could be
                      parsed (400, 408, 413, 505).
        """
        self.config = config
        self.handler = handler
        self.parser = parser
        self.limiter = limiter
        self.pipeline = pipeline or MiddlewarePipeline()
        self.decorate = decorate

    def process(self, conn: Connection) -> None:
        """Serve requests on conn until it should close, then close it."""
        with conn:
            while True:
                # ─────── READING ───────
                try:
                    raw = conn.read_request()
                except TimeoutError:
                    logger.info(f"[{conn.id}] {conn.client_ip} sent nothing, 408")
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT)
                    return
                except IncompleteRequest as e:
                    logger.warning(f"[{conn.id}] {conn.client_ip}: {e}")
                    self._send_error(conn, HTTPStatus.BAD_REQUEST)
                    return
                except RequestTooLarge as e:
                    logger.warning(f"[{conn.id}] {conn.client_ip}: {e}")
                    self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE)
                    return
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    return

                if raw is None or conn.aborted:
                    return

                # ─────── PARSED ───────
                try:
                    request = self.parser.parse(raw, conn.address)
                except HTTPParseError as e:
                    logger.warning(f"[{conn.id}] Bad request from {conn.client_ip}: {e}")
                    self._send_error(conn, HTTPStatus(e.status_code))
                    return
                conn.state = ConnectionState.PARSED

                # ─────── RATE_CHECKED ───────
                decision = self.limiter.admit(request.client_ip)
                conn.state = ConnectionState.RATE_CHECKED

                if decision.allowed:
                    response = self._dispatch(request)
                    conn.state = ConnectionState.ROUTED
                    keep_alive = self._should_keep_alive(conn, request, response)
                else:
                    response = self._rate_limited(request, decision)
                    keep_alive = False

                # ─────── RESPONDING ───────
                if not self._respond(conn, request, response, keep_alive):
                    return
                if not keep_alive:
                    return

                conn.mark_keep_alive()

    def _dispatch(self, request: HTTPRequest) -> HTTPResponse:
        try:
            return self.handler(request)
        except Exception:
            logger.exception(f"Unhandled error serving {request.method} {request.path}")
            return self._finish(error_response(HTTPStatus.INTERNAL_SERVER_ERROR))

    def _rate_limited(self, request: HTTPRequest, decision: RateDecision) -> HTTPResponse:
        """429 passed through the middleware pipeline, never the router."""
        retry_after = max(1, math.ceil(decision.retry_after))

        def too_many_requests(_request: HTTPRequest) -> HTTPResponse:
            return (text_response(HTTPStatus.TOO_MANY_REQUESTS, "Rate limit exceeded")
                .set_header("Retry-After", str(retry_after))
                .set_header("X-RateLimit-Limit", str(decision.limit))
                .set_header("X-RateLimit-Remaining", "0")
                .set_header("Cache-Control", "no-store"))

        logger.warning(f"Rate limited {request.client_ip}: {request.method} {request.path}")
        return self.pipeline.wrap(too_many_requests)(request)

    def _should_keep_alive(
        self, conn: Connection, request: HTTPRequest, response: HTTPResponse
    ) -> bool:
        if not (self.config.keep_alive and request.is_keep_alive):
            return False
        if response.status.is_server_error:
            return False
        return conn.requests_handled < self.config.max_keep_alive_requests

    def _respond(
        self,
        conn: Connection,
        request: HTTPRequest,
        response: HTTPResponse,
        keep_alive: bool,
    ) -> bool:
        """Write response to conn. Returns False if the client is gone."""
        try:
            if keep_alive:
                response.headers["Connection"] = "keep-alive"
                response.headers["Keep-Alive"] = (
                    f"timeout={int(self.config.keep_alive_timeout)}"
                )
            else:
                response.headers["Connection"] = "close"

            include_body = request.method != "HEAD"
            if not conn.send(response.to_bytes(self.config.server_name, include_body)):
                return False
            if include_body and response.stream is not None:
                return conn.send_file(response.stream, response.stream_length)
            return True
        finally:
            response.close()

    def _send_error(self, conn: Connection, status: HTTPStatus) -> None:
        """Send an error before or without a parsed request, then give up."""
        response = self._finish(error_response(status, close=True))
        conn.send(response.to_bytes(self.config.server_name))

    def _finish(self, response: HTTPResponse) -> HTTPResponse:
        if self.decorate is not None:
            response = self.decorate(response)
        return response
