"""
Unit tests for ConnectionWorker, driven over socket pairs.
"""

import socket
import threading

import pytest

from conftest import parse_response, read_one_response, read_until_close

from siteserver.config import ServerConfig
from siteserver.core.connection import Connection, ConnectionState
from siteserver.core.rate_limiter import RateLimiter
from siteserver.core.worker import ConnectionWorker
from siteserver.http.request import RequestParser
from siteserver.http.response import ResponseBuilder
from siteserver.middleware import CORSMiddleware, MiddlewarePipeline


class Harness:
    """A ConnectionWorker serving one socket pair on a background thread."""

    def __init__(self, handler, config: ServerConfig, max_requests: int = 100):
        self.calls = []

        def recording_handler(request):
            self.calls.append(request)
            return handler(request)

        cors = CORSMiddleware()
        pipeline = MiddlewarePipeline().add(cors)
        self.worker = ConnectionWorker(
            config,
            pipeline.wrap(recording_handler),
            RequestParser(),
            RateLimiter(window_seconds=60, max_requests=max_requests),
            pipeline=pipeline,
            decorate=cors.apply,
        )

        server_sock, self.client = socket.socketpair()
        self.client.settimeout(5.0)
        self.conn = Connection(
            socket=server_sock,
            address=("10.0.0.7", 5000),
            timeout=config.timeout,
            keep_alive_timeout=config.keep_alive_timeout,
            max_request_size=config.max_request_size,
        )
        self.thread = threading.Thread(target=self.worker.process, args=(self.conn,))
        self.thread.start()

    def finish(self) -> bytes:
        data = read_until_close(self.client)
        self.thread.join(timeout=5.0)
        self.client.close()
        return data


def hello(request):
    return ResponseBuilder().text(f"hello {request.path}").build()


@pytest.fixture
def worker_config(site_root) -> ServerConfig:
    return ServerConfig(
        content_dir=str(site_root),
        timeout=0.5,
        keep_alive_timeout=0.3,
        access_log_file=None,
    )


class TestRequestCycle:

    def test_single_request(self, worker_config):
        harness = Harness(hello, worker_config)
        harness.client.sendall(b"GET /a HTTP/1.1\r\nConnection: close\r\n\r\n")

        status, headers, body = parse_response(harness.finish())

        assert status == 200
        assert body == b"hello /a"
        assert headers["connection"] == "close"
        assert headers["access-control-allow-origin"] == "*"
        assert harness.conn.state == ConnectionState.CLOSED

    def test_keep_alive(self, worker_config):
        harness = Harness(hello, worker_config)

        harness.client.sendall(b"GET /a HTTP/1.1\r\n\r\n")
        status, headers, body = read_one_response(harness.client)
        assert (status, body) == (200, b"hello /a")
        assert headers["connection"] == "keep-alive"

        harness.client.sendall(b"GET /b HTTP/1.1\r\nConnection: close\r\n\r\n")
        status, headers, body = parse_response(harness.finish())
        assert (status, body) == (200, b"hello /b")
        assert len(harness.calls) == 2

    def test_idle_keep_alive_closes_without_response(self, worker_config):
        harness = Harness(hello, worker_config)

        harness.client.sendall(b"GET /a HTTP/1.1\r\n\r\n")
        read_one_response(harness.client)

        assert harness.finish() == b""

    def test_keep_alive_request_cap(self, worker_config):
        worker_config.max_keep_alive_requests = 1
        harness = Harness(hello, worker_config)

        harness.client.sendall(b"GET /a HTTP/1.1\r\n\r\n")
        _, headers, _ = parse_response(harness.finish())

        assert headers["connection"] == "close"

    def test_http10_closes(self, worker_config):
        harness = Harness(hello, worker_config)
        harness.client.sendall(b"GET /a HTTP/1.0\r\n\r\n")

        _, headers, _ = parse_response(harness.finish())
        assert headers["connection"] == "close"

    def test_head_sends_no_body(self, worker_config):
        harness = Harness(hello, worker_config)
        harness.client.sendall(b"HEAD /abc HTTP/1.1\r\nConnection: close\r\n\r\n")

        status, headers, body = parse_response(harness.finish())

        assert status == 200
        assert headers["content-length"] == str(len(b"hello /abc"))
        assert body == b""

    def test_handler_exception_is_500(self, worker_config):
        def broken(request):
            raise RuntimeError("boom")

        harness = Harness(broken, worker_config)
        harness.client.sendall(b"GET / HTTP/1.1\r\n\r\n")

        status, headers, _ = parse_response(harness.finish())
        assert status == 500
        assert headers["connection"] == "close"
        assert headers["access-control-allow-origin"] == "*"


class TestRejections:

    def test_rate_limited_skips_handler(self, worker_config):
        harness = Harness(hello, worker_config, max_requests=1)

        harness.client.sendall(b"GET /a HTTP/1.1\r\n\r\n")
        read_one_response(harness.client)
        harness.client.sendall(b"GET /b HTTP/1.1\r\n\r\n")

        status, headers, body = parse_response(harness.finish())

        assert status == 429
        assert body == b"Rate limit exceeded"
        assert int(headers["retry-after"]) >= 1
        assert headers["x-ratelimit-limit"] == "1"
        assert headers["cache-control"] == "no-store"
        assert headers["access-control-allow-origin"] == "*"
        assert headers["connection"] == "close"
        assert [r.path for r in harness.calls] == ["/a"]

    @pytest.mark.parametrize("raw, expected", [
        (b"garbage\r\n\r\n", 400),
        (b"GET / HTTP/1.1\r\nBad Header\r\n\r\n", 400),
        (b"GET / HTTP/2.0\r\n\r\n", 505),
    ])
    def test_parse_errors(self, worker_config, raw, expected):
        harness = Harness(hello, worker_config)
        harness.client.sendall(raw)

        status, headers, body = parse_response(harness.finish())

        assert status == expected
        assert headers["connection"] == "close"
        assert headers["access-control-allow-origin"] == "*"
        assert harness.calls == []

    def test_silent_client_gets_408(self, worker_config):
        harness = Harness(hello, worker_config)

        status, _, body = parse_response(harness.finish())

        assert status == 408
        assert body == b"<html><body><h1>408 Request Timeout</h1></body></html>"

    def test_partial_request_gets_400(self, worker_config):
        harness = Harness(hello, worker_config)
        harness.client.sendall(b"GET / HTTP/1.1\r\nHost: x\r\n")

        status, _, _ = parse_response(harness.finish())
        assert status == 400

    def test_oversized_request_gets_413(self, worker_config):
        worker_config.max_request_size = 256
        harness = Harness(hello, worker_config)
        harness.client.sendall(b"POST / HTTP/1.1\r\nContent-Length: 5000\r\n\r\n")

        status, _, _ = parse_response(harness.finish())
        assert status == 413
