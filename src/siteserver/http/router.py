"""
=============================================================================
REQUEST ROUTER
=============================================================================

Decides which handler answers a request.

=============================================================================
DISPATCH ORDER
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   request                                                           │
    │      │                                                              │
    │      ├── OPTIONS ?                ──► 204 preflight (no handler)    │
    │      │                                                              │
    │      ├── method not served ?      ──► 405 + Allow (no handler,      │
    │      │                                no filesystem access)         │
    │      │                                                              │
    │      ├── exact path registered ?  ──► that handler                  │
    │      │     e.g. /visitor-count                                      │
    │      │                                                              │
    │      └── otherwise                ──► fallback handler              │
    │                                       (static files)                │
    │                                                                     │
    │   handler raised ?                ──► on_error(500)                 │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Built-in routes are exact string matches on the raw request path. They
are checked before the fallback, so a file named "visitor-count" in the
content root can never shadow the endpoint.
=============================================================================
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Tuple
import logging

from .request import HTTPRequest
from .response import HTTPResponse, ResponseBuilder, error_response
from .status_codes import HTTPStatus


logger = logging.getLogger(__name__)


# A handler takes a request and returns a response
Handler = Callable[[HTTPRequest], HTTPResponse]

# Produces the response for an error status (custom page or built-in)
ErrorRenderer = Callable[[HTTPStatus], HTTPResponse]


@dataclass
class Route:
    """
    One built-in route.

    Attributes:
        path: Exact request path, e.g. "/visitor-count".
        handler: Callable producing the response.
        name: Label used in logs.
    """

    path: str
    handler: Handler
    name: str = ""

    def __post_init__(self):
        if not self.name:
            self.name = getattr(self.handler, "__name__", self.path)


@dataclass
class Router:
    """
    Exact-path routing table with a fallback handler.

    Usage:
        router = Router(fallback=static_handler.handle)

        @router.route("/visitor-count")
        def visitor_count(request):
            ...

        response = router.handle(request)
    """

    fallback: Optional[Handler] = None
    on_error: ErrorRenderer = error_response
    methods: Tuple[str, ...] = ("GET", "HEAD")
    preflight_headers: Dict[str, str] = field(default_factory=lambda: {
        "Access-Control-Allow-Methods": "GET, HEAD, OPTIONS",
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Max-Age": "86400",
    })
    _routes: Dict[str, Route] = field(default_factory=dict, repr=False)

    @property
    def allow_header(self) -> str:
        """Value for the Allow header: served methods plus OPTIONS."""
        return ", ".join(self.methods + ("OPTIONS",))

    # =========================================================================
    # ROUTE REGISTRATION
    # =========================================================================

    def add_route(self, path: str, handler: Handler, name: str = "") -> Route:
        """
        Register a handler for an exact path.

        Raises:
            ValueError: If the path is already registered.
        """
        if not path.startswith("/"):
            raise ValueError(f"Route path must start with '/': {path!r}")
        if path in self._routes:
            raise ValueError(f"Route already registered: {path}")

        route = Route(path=path, handler=handler, name=name)
        self._routes[path] = route
        logger.debug(f"Registered route {path} -> {route.name}")
        return route

    def route(self, path: str, name: str = "") -> Callable[[Handler], Handler]:
        """Decorator form of add_route()."""
        def decorator(handler: Handler) -> Handler:
            self.add_route(path, handler, name)
            return handler
        return decorator

    def match(self, path: str) -> Optional[Route]:
        """Built-in route for the path, or None."""
        return self._routes.get(path)

    # =========================================================================
    # DISPATCH
    # =========================================================================

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        """
        Produce the response for a request.

        Never raises: handler failures become a 500 from on_error().
        """
        if request.method == "OPTIONS":
            return self._preflight()

        if request.method not in self.methods:
            response = self.on_error(HTTPStatus.METHOD_NOT_ALLOWED)
            response.set_header("Allow", self.allow_header)
            return response

        route = self.match(request.path)
        handler = route.handler if route else self.fallback

        if handler is None:
            return self.on_error(HTTPStatus.NOT_FOUND)

        try:
            return handler(request)
        except Exception:
            logger.exception(f"Handler failed for {request.method} {request.path}")
            return self.on_error(HTTPStatus.INTERNAL_SERVER_ERROR)

    def _preflight(self) -> HTTPResponse:
        return (ResponseBuilder()
            .status(HTTPStatus.NO_CONTENT)
            .header("Allow", self.allow_header)
            .headers(self.preflight_headers)
            .build())

    @property
    def paths(self):
        """Registered built-in paths, in registration order."""
        return list(self._routes)

    def __repr__(self) -> str:
        return f"<Router routes={sorted(self._routes)} fallback={self.fallback is not None}>"
