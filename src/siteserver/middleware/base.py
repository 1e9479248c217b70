"""
=============================================================================
MIDDLEWARE BASE
=============================================================================

Middleware wraps the router with behaviour every response shares.

    pipeline.add(LoggingMiddleware())   # outermost: sees the final response
    pipeline.add(CORSMiddleware())      # adds CORS headers on the way out

    handler = pipeline.wrap(router.handle)

            ┌───────────────────────────────────────────────┐
            │  LoggingMiddleware                            │
            │  ┌─────────────────────────────────────────┐  │
            │  │  CORSMiddleware                         │  │
            │  │  ┌───────────────────────────────────┐  │  │
            │  │  │         router.handle             │  │  │
            │  │  └───────────────────────────────────┘  │  │
            │  └─────────────────────────────────────────┘  │
            └───────────────────────────────────────────────┘

The same pipeline also wraps the 429 responder, so rate-limited requests
are logged and carry CORS headers without ever reaching the router.
=============================================================================
"""

from abc import ABC, abstractmethod
from typing import Callable, List
import logging

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger(__name__)


# The rest of the chain, as seen from inside a middleware
NextHandler = Callable[[HTTPRequest], HTTPResponse]


class Middleware(ABC):
    """
    A layer around the request handler.

        class AddHeader(Middleware):
            def __call__(self, request, next):
                response = next(request)
                response.set_header("X-Thing", "1")
                return response
    """

    @abstractmethod
    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        """
        Process a request.

        Args:
            request: The incoming request.
            next: The rest of the chain. Call it unless short-circuiting.

        Returns:
            The response to send.
        """

    @property
    def name(self) -> str:
        return self.__class__.__name__


class MiddlewarePipeline:
    """
    Ordered middleware list; first added is outermost.

    Usage:
        pipeline = MiddlewarePipeline().use(LoggingMiddleware(), CORSMiddleware())
        handler = pipeline.wrap(router.handle)
    """

    def __init__(self):
        self._middleware: List[Middleware] = []

    def add(self, middleware: Middleware) -> "MiddlewarePipeline":
        self._middleware.append(middleware)
        logger.debug(f"Added middleware: {middleware.name}")
        return self

    def use(self, *middleware: Middleware) -> "MiddlewarePipeline":
        for mw in middleware:
            self.add(mw)
        return self

    def wrap(self, handler: NextHandler) -> NextHandler:
        """
        Build the chain around handler.

        Wrapping runs in reverse so the first middleware added ends up
        outermost:  [A, B] + h  →  A(B(h))
        """
        current = handler
        for middleware in reversed(self._middleware):
            current = self._bind(middleware, current)
        return current

    @staticmethod
    def _bind(middleware: Middleware, next_handler: NextHandler) -> NextHandler:
        def wrapped(request: HTTPRequest) -> HTTPResponse:
            return middleware(request, next_handler)
        return wrapped

    def __iter__(self):
        return iter(self._middleware)
