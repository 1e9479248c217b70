"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Response descriptors and their wire serialization.

=============================================================================
TWO KINDS OF BODY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │  In-memory body             HTTPResponse(body=b"...")               │
    │  ─────────────              Error pages, the visitor count,         │
    │                             preflight replies. Serialized in one    │
    │                             piece by to_bytes().                    │
    │                                                                     │
    │  Streamed body              HTTPResponse(stream=<open file>,        │
    │  ─────────────                           stream_length=n)           │
    │                             Static files. head_bytes() is sent      │
    │                             first, then the worker hands the open   │
    │                             file to socket.sendfile(). The file is  │
    │                             never read into memory as a whole.      │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

Either way Content-Length is computed here, never by the handler, so a
HEAD response advertises exactly the length a GET would have sent.

=============================================================================
WIRE FORMAT
=============================================================================

    HTTP/1.1 200 OK\r\n
    Content-Type: text/html; charset=utf-8\r\n
    Content-Length: 1432\r\n
    Date: Mon, 19 Oct 2026 08:15:02 GMT\r\n
    Server: SiteServer/1.0\r\n
    Access-Control-Allow-Origin: *\r\n
    \r\n
    <!DOCTYPE html>...
=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Dict, Optional, Union

from .status_codes import HTTPStatus


@dataclass
class HTTPResponse:
    """
    An HTTP response waiting to be written to a client.

    Attributes:
        status:        Status code.
        headers:       Header name → value, names in canonical case.
        body:          In-memory body.
        version:       Protocol version for the status line.
        stream:        Open binary file to send after the head. Takes
                       precedence over body.
        stream_length: Number of bytes the stream will produce.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"
    stream: Optional[BinaryIO] = field(default=None, repr=False)
    stream_length: int = 0

    @property
    def status_line(self) -> str:
        """Status line, e.g. HTTP/1.1 404 Not Found."""
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    @property
    def content_length(self) -> int:
        return self.stream_length if self.stream is not None else len(self.body)

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        """Set a header, returning self for chaining."""
        self.headers[name] = value
        return self

    def head_bytes(self, server_name: str = "SiteServer/1.0") -> bytes:
        """
        Serialize the status line and headers, including the blank line.

        Content-Length, Date and Server are filled in when the handler
        did not set them.
        """
        response_headers = dict(self.headers)

        if "Content-Length" not in response_headers and self.status != HTTPStatus.NO_CONTENT:
            response_headers["Content-Length"] = str(self.content_length)

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        return "\r\n".join(lines).encode("latin-1") + b"\r\n"

    def to_bytes(self, server_name: str = "SiteServer/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the whole response.

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests. Headers are unchanged.

        Returns:
            Head plus in-memory body. A streamed body is not included;
            the caller sends it separately.
        """
        head = self.head_bytes(server_name)
        if not include_body or self.stream is not None:
            return head
        return head + self.body

    def close(self) -> None:
        """Release the streamed file, if any. Safe to call twice."""
        if self.stream is not None:
            self.stream.close()
            self.stream = None


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .text("42")
            .no_cache()
            .build())

    Every method except build() returns the builder.
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""
        self._stream: Optional[BinaryIO] = None
        self._stream_length = 0

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = HTTPStatus(status)
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        return self.header("Content-Type", content_type)

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        """Plain-text body."""
        return self.content_type(content_type).body(text)

    def html(self, html: Union[str, bytes]) -> "ResponseBuilder":
        """HTML body."""
        return self.content_type("text/html; charset=utf-8").body(html)

    def stream(self, fileobj: BinaryIO, length: int, content_type: str) -> "ResponseBuilder":
        """
        Stream an already opened file as the body.

        Args:
            fileobj: File opened in binary mode. The response owns it from
                     here on and closes it after sending.
            length: Size in bytes, taken from fstat() of the same handle.
            content_type: Content-Type header value.
        """
        self._stream = fileobj
        self._stream_length = length
        return self.content_type(content_type)

    def no_cache(self) -> "ResponseBuilder":
        """Forbid caching; used for the live visitor count."""
        return self.header("Cache-Control", "no-store")

    def cache(self, max_age: int = 3600) -> "ResponseBuilder":
        return self.header("Cache-Control", f"public, max-age={max_age}")

    def close_connection(self) -> "ResponseBuilder":
        return self.header("Connection", "close")

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
            stream=self._stream,
            stream_length=self._stream_length,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
_MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
           "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]


def format_http_date(dt: datetime) -> str:
    """
    Format a UTC datetime as an HTTP-date.

        Mon, 19 Oct 2026 08:15:02 GMT

    Names are spelled out by hand because strftime follows the locale.
    """
    return (
        f"{_DAYS[dt.weekday()]}, "
        f"{dt.day:02d} {_MONTHS[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


def error_response(status: HTTPStatus, close: bool = False) -> HTTPResponse:
    """
    Minimal built-in HTML error page.

        <html><body><h1>404 Not Found</h1></body></html>

    Used whenever no custom asset applies.

    Args:
        status: The error status.
        close: Add "Connection: close".
    """
    status = HTTPStatus(status)
    builder = (ResponseBuilder()
        .status(status)
        .html(f"<html><body><h1>{int(status)} {status.phrase}</h1></body></html>"))
    if close:
        builder.close_connection()
    return builder.build()


def text_response(status: HTTPStatus, text: str) -> HTTPResponse:
    """Short text/plain response such as "Rate limit exceeded"."""
    return ResponseBuilder().status(status).text(text).build()
