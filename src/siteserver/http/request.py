"""
=============================================================================
HTTP REQUEST PARSING
=============================================================================

Turns the raw bytes read from a client socket into an HTTPRequest.

=============================================================================
WHAT THE PARSER DOES AND DOES NOT DO
=============================================================================

    b"GET /blog/%7Euser/?x=1 HTTP/1.1\r\nHost: a\r\n\r\n"
                 │
                 ▼
    HTTPRequest(
        method  = "GET",
        target  = "/blog/%7Euser/?x=1",     raw request-target
        path    = "/blog/%7Euser/",         query stripped, NOT decoded
        query   = "x=1",
        version = "HTTP/1.1",
        headers = {"host": "a"},
    )

The path is left percent-encoded on purpose. Decoding happens exactly once,
inside the path resolver, right before the containment check. Decoding here
as well would let "%252e%252e" turn into ".." on the second pass.

The parser also does not judge methods. Any upper-case token is accepted;
the router is the one that answers 405 for methods it does not serve.

=============================================================================
HEADERS
=============================================================================

    - Names are case-insensitive → stored lower-cased.
    - A repeated header keeps its LAST value:
          X-Thing: a
          X-Thing: b        → headers["x-thing"] == "b"
    - A line without a colon is a malformed request (400).
    - Content-Length must be a non-negative integer (400 otherwise).

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple
from urllib.parse import urlsplit
import re


class HTTPParseError(Exception):
    """
    Raised when a request cannot be parsed.

    Carries the HTTP status the connection worker should answer with:

        400 Bad Request                  malformed syntax
        413 Payload Too Large            over max_request_size
        505 HTTP Version Not Supported   not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Created by RequestParser for every request read from a connection and
    discarded once the response is written.

    Attributes:
        method:         Request method token (GET, HEAD, OPTIONS, ...).
        path:           Request path, query and fragment removed, still
                        percent-encoded.
        version:        "HTTP/1.0" or "HTTP/1.1".
        target:         The request-target exactly as sent.
        query:          Raw query string ("" when absent).
        headers:        Header name (lower-case) → value, last one wins.
        body:           Request body bytes, if a Content-Length was sent.
        client_address: (ip, port) of the peer.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    target: str = ""
    query: str = ""
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    client_address: Tuple[str, int] = ("", 0)

    @property
    def client_ip(self) -> str:
        """Peer IP address; the rate limiter keys on this."""
        return self.client_address[0]

    @property
    def content_length(self) -> Optional[int]:
        """Declared body length, or None when the header is absent."""
        value = self.headers.get("content-length")
        return int(value) if value is not None else None

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        Whether the client wants the connection kept open.

            HTTP/1.1: open unless "Connection: close"
            HTTP/1.0: closed unless "Connection: keep-alive"
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)


class RequestParser:
    """
    Parses raw HTTP/1.x request bytes into HTTPRequest objects.

    One parser instance is shared by every worker; it holds no per-request
    state, only the size limit.

    Usage:
        parser = RequestParser(max_request_size=1024 * 1024)
        request = parser.parse(data, client_address=("10.0.0.7", 51234))
    """

    # METHOD SP request-target SP HTTP-version
    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) (\S+) (HTTP/\d\.\d)$")

    # field-name ":" OWS field-value OWS
    HEADER_PATTERN = re.compile(r"^([!#$%&'*+\-.^_`|~0-9A-Za-z]+):[ \t]*(.*?)[ \t]*$")

    SUPPORTED_VERSIONS = ("HTTP/1.0", "HTTP/1.1")

    def __init__(self, max_request_size: int = 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: Tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse one complete request.

        Args:
            data: Request head, terminator and body as read by Connection.
            client_address: Peer (ip, port).

        Returns:
            The parsed request.

        Raises:
            HTTPParseError: With the status code to answer.
        """
        # ─────── STEP 1: size limit ───────
        if len(data) > self.max_request_size:
            raise HTTPParseError(
                f"Request too large: {len(data)} bytes",
                status_code=413,
            )

        # ─────── STEP 2: split head and body ───────
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        try:
            # HTTP heads are ASCII; latin-1 maps every byte so nothing is lost
            head = data[:header_end].decode("latin-1")
        except UnicodeDecodeError as e:
            raise HTTPParseError(f"Failed to decode request head: {e}")

        body = data[header_end + 4:]
        lines = head.split("\r\n")

        # ─────── STEP 3: request line ───────
        method, target, path, query, version = self._parse_request_line(lines[0])

        # ─────── STEP 4: headers ───────
        headers = self._parse_headers(lines[1:])

        # ─────── STEP 5: body ───────
        content_length = self._parse_content_length(headers)
        if content_length is not None:
            if len(body) < content_length:
                raise HTTPParseError(
                    f"Incomplete body: expected {content_length} bytes, got {len(body)}"
                )
            body = body[:content_length]
        else:
            body = b""

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            target=target,
            query=query,
            headers=headers,
            body=body,
            client_address=client_address,
        )

    def _parse_request_line(self, line: str) -> Tuple[str, str, str, str, str]:
        """
        Split "GET /a/b?c=d HTTP/1.1" into its parts.

        Accepted request-target forms:
            origin-form    /path?query
            absolute-form  http://host/path?query   (path taken from it)
            asterisk-form  *                         (OPTIONS only)

        Returns:
            (method, target, path, query, version)
        """
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line[:100]!r}")

        method, target, version = match.groups()

        if version not in self.SUPPORTED_VERSIONS:
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        if target == "*":
            if method != "OPTIONS":
                raise HTTPParseError("Asterisk target is only valid for OPTIONS")
            return method, target, "*", "", version

        if target.startswith("/"):
            # Split by hand so "//x" is not mistaken for a network location
            path, _, query = target.partition("?")
            path = path.split("#", 1)[0]
        elif target.lower().startswith(("http://", "https://")):
            parts = urlsplit(target)
            path, query = parts.path or "/", parts.query
        else:
            raise HTTPParseError(f"Invalid request target: {target[:100]!r}")

        return method, target, path, query, version

    def _parse_headers(self, lines) -> Dict[str, str]:
        """
        Parse header lines into a lower-cased dict.

        Duplicate names keep the last value. Obsolete line folding
        (continuation lines starting with whitespace) is rejected as
        malformed, as RFC 7230 allows a server to do.
        """
        headers: Dict[str, str] = {}

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                raise HTTPParseError("Obsolete header line folding is not supported")

            match = self.HEADER_PATTERN.match(line)
            if not match:
                raise HTTPParseError(f"Malformed header line: {line[:100]!r}")

            name, value = match.groups()
            headers[name.lower()] = value

        return headers

    @staticmethod
    def _parse_content_length(headers: Dict[str, str]) -> Optional[int]:
        value = headers.get("content-length")
        if value is None:
            return None
        if not value.isdigit():
            raise HTTPParseError(f"Invalid Content-Length: {value!r}")
        return int(value)


def parse_request(
    data: bytes,
    client_address: Tuple[str, int] = ("", 0),
    max_size: int = 1024 * 1024
) -> HTTPRequest:
    """Parse a single request with a throwaway parser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)
