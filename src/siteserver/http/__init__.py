"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Everything that knows what HTTP/1.x looks like on the wire:

    request.py       bytes  → HTTPRequest
    response.py      HTTPResponse → bytes
    router.py        HTTPRequest → handler → HTTPResponse
    status_codes.py  codes and reason phrases
    mime_types.py    file extension → Content-Type

Nothing here touches sockets or the filesystem.
=============================================================================
"""

from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,    # built-in HTML error page
    text_response,     # short text/plain body
)
from .router import Router, Route
from .status_codes import HTTPStatus
from .mime_types import get_mime_type, get_content_type

__all__ = [
    # Request parsing
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",

    # Response building
    "HTTPResponse",
    "ResponseBuilder",
    "error_response",
    "text_response",

    # Routing
    "Router",
    "Route",

    # Status codes
    "HTTPStatus",

    # Content types
    "get_mime_type",
    "get_content_type",
]
