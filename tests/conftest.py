"""
pytest configuration and fixtures.
"""

import dataclasses
import socket
import threading
from pathlib import Path
from typing import Dict, Generator, Tuple
import pytest

# Add src to path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from siteserver import HTTPServer, ServerConfig


INDEX_HTML = b"<!DOCTYPE html><html><body><h1>Home</h1></body></html>"
BLOG_HTML = b"<!DOCTYPE html><html><body><h1>Blog</h1></body></html>"
STYLE_CSS = b"body { color: #333; }\n"
CUSTOM_404 = b"<html><body><h1>Nothing here</h1></body></html>"


@pytest.fixture
def site_root(tmp_path: Path) -> Path:
    """
    A small site plus a file just outside it:

        tmp/
            secret.txt
            public_html/
                index.html
                style.css
                my page.html
                blog/index.html
                empty/
    """
    (tmp_path / "secret.txt").write_text("top secret")

    root = tmp_path / "public_html"
    root.mkdir()
    (root / "index.html").write_bytes(INDEX_HTML)
    (root / "style.css").write_bytes(STYLE_CSS)
    (root / "my page.html").write_bytes(b"<p>spaces</p>")
    (root / "blog").mkdir()
    (root / "blog" / "index.html").write_bytes(BLOG_HTML)
    (root / "empty").mkdir()
    return root


@pytest.fixture
def error_dir(tmp_path: Path) -> Path:
    assets = tmp_path / "server_assets"
    assets.mkdir()
    (assets / "404.html").write_bytes(CUSTOM_404)
    return assets


@pytest.fixture
def config(site_root: Path, error_dir: Path) -> ServerConfig:
    """Test configuration: ephemeral port, short timeouts, no log file."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        content_dir=str(site_root),
        error_dir=str(error_dir),
        max_workers=4,
        queue_size=4,
        timeout=2.0,
        keep_alive_timeout=1.0,
        connection_lifetime=10.0,
        log_level="WARNING",
        access_log_file=None,
    )


# =============================================================================
# LIVE SERVER
# =============================================================================

class TestServer:
    """Runs an HTTPServer on a background thread."""

    __test__ = False

    def __init__(self, server: HTTPServer):
        self.server = server
        self._thread: threading.Thread = None

    @property
    def address(self) -> Tuple[str, int]:
        return self._address

    def start(self):
        self._thread = threading.Thread(target=self.server.run, daemon=True)
        self._thread.start()

        if not self.server.wait_until_ready(timeout=5.0):
            raise RuntimeError("Server failed to start")
        self._address = self.server.address

    def stop(self):
        self.server.stop()
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=10.0)

    def connect(self, timeout: float = 5.0) -> socket.socket:
        return socket.create_connection(self.address, timeout=timeout)

    def exchange(self, raw: bytes, timeout: float = 5.0) -> bytes:
        """Send raw bytes and read until the server closes."""
        with self.connect(timeout) as sock:
            sock.sendall(raw)
            return read_until_close(sock)

    def get(self, path: str, method: str = "GET", headers: Dict[str, str] = None):
        """One request on a fresh connection; returns (status, headers, body)."""
        lines = [f"{method} {path} HTTP/1.1", "Host: localhost", "Connection: close"]
        for name, value in (headers or {}).items():
            lines.append(f"{name}: {value}")
        raw = ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")
        return parse_response(self.exchange(raw))


def read_until_close(sock: socket.socket) -> bytes:
    chunks = []
    while True:
        try:
            chunk = sock.recv(65536)
        except ConnectionResetError:
            break
        if not chunk:
            break
        chunks.append(chunk)
    return b"".join(chunks)


def parse_response(raw: bytes):
    """Split a raw response into (status, lower-cased headers, body)."""
    head, _, body = raw.partition(b"\r\n\r\n")
    lines = head.decode("latin-1").split("\r\n")
    status = int(lines[0].split(" ", 2)[1])
    headers = {}
    for line in lines[1:]:
        name, _, value = line.partition(":")
        headers[name.strip().lower()] = value.strip()
    return status, headers, body


def read_one_response(sock: socket.socket):
    """Read exactly one Content-Length delimited response off a kept-alive socket."""
    data = b""
    while b"\r\n\r\n" not in data:
        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError("closed before headers")
        data += chunk
    head, _, rest = data.partition(b"\r\n\r\n")
    status, headers, _ = parse_response(head + b"\r\n\r\n")
    length = int(headers.get("content-length", "0"))
    while len(rest) < length:
        chunk = sock.recv(4096)
        if not chunk:
            raise ConnectionError("closed mid-body")
        rest += chunk
    return status, headers, rest[:length]


@pytest.fixture
def serve(config: ServerConfig) -> Generator:
    """
    Factory for running servers. Keyword arguments override the test
    config; every server started is stopped at teardown.

        def test_x(serve):
            server = serve(rate_limit_max_requests=2)
            status, headers, body = server.get("/")
    """
    started = []

    def start(**overrides) -> TestServer:
        test_server = TestServer(HTTPServer(dataclasses.replace(config, **overrides)))
        test_server.start()
        started.append(test_server)
        return test_server

    yield start

    for test_server in started:
        test_server.stop()


@pytest.fixture
def test_server(serve) -> TestServer:
    """A running server with the default test config."""
    return serve()
