"""
Unit tests for HTTP request parsing.
"""

import pytest

from siteserver.http.request import (
    HTTPRequest,
    RequestParser,
    HTTPParseError,
    parse_request,
)


SIMPLE_GET = (
    b"GET /blog/index.html?ref=home HTTP/1.1\r\n"
    b"Host: localhost:8000\r\n"
    b"User-Agent: pytest\r\n"
    b"Accept: text/html\r\n"
    b"\r\n"
)


class TestRequestParser:
    """Tests for RequestParser class."""

    def test_parse_simple_get(self):
        """Request line parts and client address are kept."""
        parser = RequestParser()
        request = parser.parse(SIMPLE_GET, ("127.0.0.1", 12345))

        assert request.method == "GET"
        assert request.path == "/blog/index.html"
        assert request.query == "ref=home"
        assert request.target == "/blog/index.html?ref=home"
        assert request.version == "HTTP/1.1"
        assert request.client_address == ("127.0.0.1", 12345)
        assert request.client_ip == "127.0.0.1"

    def test_parse_headers(self):
        """Header names are lower-cased, lookup is case-insensitive."""
        request = parse_request(SIMPLE_GET)

        assert request.headers["host"] == "localhost:8000"
        assert request.user_agent == "pytest"
        assert request.get_header("Accept") == "text/html"
        assert request.get_header("X-Missing", "none") == "none"

    def test_path_is_not_decoded(self):
        """Percent-decoding is left to the path resolver."""
        request = parse_request(b"GET /%2e%2e/secret.txt HTTP/1.1\r\n\r\n")
        assert request.path == "/%2e%2e/secret.txt"

    def test_fragment_dropped(self):
        request = parse_request(b"GET /page.html#top HTTP/1.1\r\n\r\n")
        assert request.path == "/page.html"

    def test_absolute_form_target(self):
        request = parse_request(b"GET http://example.com/style.css?v=2 HTTP/1.1\r\n\r\n")
        assert request.path == "/style.css"
        assert request.query == "v=2"

    def test_asterisk_only_for_options(self):
        request = parse_request(b"OPTIONS * HTTP/1.1\r\n\r\n")
        assert request.path == "*"

        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET * HTTP/1.1\r\n\r\n")
        assert exc_info.value.status_code == 400

    def test_parse_body_with_content_length(self):
        data = (
            b"POST /form HTTP/1.1\r\n"
            b"Content-Length: 5\r\n"
            b"\r\n"
            b"hello"
        )
        request = parse_request(data)

        assert request.body == b"hello"
        assert request.content_length == 5

    def test_duplicate_header_last_wins(self):
        data = b"GET / HTTP/1.1\r\nX-Thing: one\r\nx-thing: two\r\n\r\n"
        assert parse_request(data).headers["x-thing"] == "two"

    def test_http10_request(self):
        request = parse_request(b"GET / HTTP/1.0\r\n\r\n")
        assert request.version == "HTTP/1.0"
        assert request.is_keep_alive is False


class TestKeepAlive:
    """Connection persistence rules."""

    def test_http11_defaults_to_keep_alive(self):
        request = HTTPRequest(method="GET", path="/", version="HTTP/1.1")
        assert request.is_keep_alive is True

    def test_http11_connection_close(self):
        request = HTTPRequest(
            method="GET", path="/", version="HTTP/1.1",
            headers={"connection": "close"},
        )
        assert request.is_keep_alive is False

    def test_http10_keep_alive_opt_in(self):
        request = HTTPRequest(
            method="GET", path="/", version="HTTP/1.0",
            headers={"connection": "Keep-Alive"},
        )
        assert request.is_keep_alive is True


class TestParseErrors:
    """Malformed input maps to the right status code."""

    @pytest.mark.parametrize("data", [
        b"GET / HTTP/1.1\r\nHost: x\r\n",              # no blank line
        b"garbage\r\n\r\n",                            # no request line
        b"get / HTTP/1.1\r\n\r\n",                     # lower-case method
        b"GET  / HTTP/1.1\r\n\r\n",                    # double space
        b"GET relative HTTP/1.1\r\n\r\n",              # not a path
        b"GET / HTTP/1.1\r\nNo colon here\r\n\r\n",    # malformed header
        b"GET / HTTP/1.1\r\nBad Name: x\r\n\r\n",      # space in name
        b"GET / HTTP/1.1\r\nA: b\r\n  folded\r\n\r\n", # obs-fold
    ])
    def test_bad_request(self, data: bytes):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(data)
        assert exc_info.value.status_code == 400

    def test_unsupported_version(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"GET / HTTP/2.0\r\n\r\n")
        assert exc_info.value.status_code == 505

    def test_invalid_content_length(self):
        with pytest.raises(HTTPParseError) as exc_info:
            parse_request(b"POST / HTTP/1.1\r\nContent-Length: -1\r\n\r\n")
        assert exc_info.value.status_code == 400

    def test_short_body(self):
        with pytest.raises(HTTPParseError):
            parse_request(b"POST / HTTP/1.1\r\nContent-Length: 10\r\n\r\nabc")

    def test_request_too_large(self):
        parser = RequestParser(max_request_size=64)
        data = b"GET /" + b"a" * 100 + b" HTTP/1.1\r\n\r\n"

        with pytest.raises(HTTPParseError) as exc_info:
            parser.parse(data)
        assert exc_info.value.status_code == 413
