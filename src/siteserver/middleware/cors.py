"""
=============================================================================
CORS HEADERS
=============================================================================

Browsers only let a page on one origin read responses from another origin
if the response says so:

    Page:     https://blog.example.com
    Script:   fetch("https://stats.example.com/visitor-count")

    Response must carry:
        Access-Control-Allow-Origin: https://blog.example.com   (or *)

Every response this server sends carries the header, errors included.
A 404 or 429 without it surfaces in the browser as an opaque "CORS
error", hiding the real status from the page's script.

Preflight (OPTIONS) requests are answered by the router with 204; this
middleware adds the same origin header to that reply like any other.

    ┌──────────────────────────────────────┬────────────────────────────┐
    │ Header                               │ Value                      │
    ├──────────────────────────────────────┼────────────────────────────┤
    │ Access-Control-Allow-Origin          │ configured origin, "*"     │
    │ Access-Control-Allow-Methods         │ GET, HEAD, OPTIONS         │
    │ Access-Control-Allow-Headers         │ Content-Type               │
    │ Access-Control-Expose-Headers        │ optional                   │
    │ Vary: Origin                         │ when origin is not "*"     │
    └──────────────────────────────────────┴────────────────────────────┘
=============================================================================
"""

from dataclasses import dataclass, field
from typing import List

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


@dataclass
class CORSConfig:
    """
    CORS settings.

    Attributes:
        allow_origin: Access-Control-Allow-Origin value.
        allow_methods: Methods advertised to browsers.
        allow_headers: Request headers browsers may send.
        expose_headers: Response headers scripts may read.
    """

    allow_origin: str = "*"
    allow_methods: List[str] = field(default_factory=lambda: ["GET", "HEAD", "OPTIONS"])
    allow_headers: List[str] = field(default_factory=lambda: ["Content-Type"])
    expose_headers: List[str] = field(default_factory=list)


class CORSMiddleware(Middleware):
    """
    Adds CORS headers to every response passing through.

    apply() is the same operation for responses built outside the
    pipeline (400, 408, 413, 503).

    Usage:
        cors = CORSMiddleware(CORSConfig(allow_origin="https://example.com"))
        pipeline.add(cors)
        cors.apply(error_response(HTTPStatus.SERVICE_UNAVAILABLE))
    """

    def __init__(self, config: CORSConfig = None):
        self.config = config or CORSConfig()

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        return self.apply(next(request))

    def apply(self, response: HTTPResponse) -> HTTPResponse:
        """Set the CORS headers on response and return it."""
        config = self.config
        response.headers["Access-Control-Allow-Origin"] = config.allow_origin
        response.headers.setdefault(
            "Access-Control-Allow-Methods", ", ".join(config.allow_methods)
        )
        response.headers.setdefault(
            "Access-Control-Allow-Headers", ", ".join(config.allow_headers)
        )

        if config.expose_headers:
            response.headers["Access-Control-Expose-Headers"] = ", ".join(
                config.expose_headers
            )

        # A specific origin makes the response vary by requester
        if config.allow_origin != "*":
            vary = response.headers.get("Vary", "")
            if "Origin" not in vary:
                response.headers["Vary"] = f"{vary}, Origin".lstrip(", ")

        return response
