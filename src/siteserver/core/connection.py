"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted client socket: buffered reads of whole requests,
writes of responses and file bodies, timeouts, and a safe close.

=============================================================================
CONNECTION STATES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                     │
    │   NEW ──► READING ──► PARSED ──► RATE_CHECKED ──► ROUTED            │
    │              ▲                        │              │              │
    │              │                        │ limited      ▼              │
    │              │                        └────────► RESPONDING         │
    │              │                                       │              │
    │          KEEP_ALIVE ◄────────── keep-alive ──────────┤              │
    │                                                      │              │
    │   any state ── error / timeout / EOF / close ──► CLOSED             │
    │                                                                     │
    └─────────────────────────────────────────────────────────────────────┘

READING, KEEP_ALIVE and CLOSED are set here. The states in between are
set by ConnectionWorker as the request moves through the pipeline.

=============================================================================
TWO CLOCKS PER CONNECTION
=============================================================================

    timeout               Idle limit for a single recv(). A client that
                          goes quiet mid-request is cut off.

    lifetime              Ceiling for the whole connection, counted from
                          accept(). A client trickling one byte every few
                          seconds never trips the idle limit but does
                          trip this one.

Each recv() waits for min(timeout, time left in lifetime). For writes the
worker pool's watchdog calls abort() once the lifetime is over, which
shuts the socket down and makes the blocked send() fail at once.
=============================================================================
"""

import socket
import time
import logging
import threading
from enum import Enum
from dataclasses import dataclass, field
from typing import BinaryIO, Optional, Tuple
import uuid


logger = logging.getLogger(__name__)

# Upper bound on how long close() waits for the peer to finish sending
DRAIN_TIMEOUT = 0.5


class ConnectionState(Enum):
    """Where a connection is in its request cycle."""

    NEW = "new"
    READING = "reading"
    PARSED = "parsed"
    RATE_CHECKED = "rate_checked"
    ROUTED = "routed"
    RESPONDING = "responding"
    KEEP_ALIVE = "keep_alive"
    CLOSED = "closed"


class RequestTooLarge(ValueError):
    """The request head or declared body exceeds max_request_size."""


class IncompleteRequest(ConnectionError):
    """The client stopped sending (EOF or timeout) partway through a request."""


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: Accepted client socket.
        address: Peer (ip, port).
        id: Short identifier for log lines.
        state: Current ConnectionState.
        created_at: time.monotonic() at accept.
        requests_handled: Requests read so far.
        buffer_size: Bytes per recv().
        timeout: Idle read timeout in seconds.
        keep_alive_timeout: Idle wait for the next request on a
                            persistent connection.
        lifetime: Seconds this connection may exist in total.
        max_request_size: Upper bound for head plus body.

    Usable as a context manager; leaving the block closes the socket.
    """

    socket: socket.socket
    address: Tuple[str, int]
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.monotonic)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    lifetime: float = 120.0
    max_request_size: int = 1024 * 1024

    _buffer: bytearray = field(default_factory=bytearray, repr=False)
    _close_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _aborted: bool = field(default=False, repr=False)

    def __post_init__(self):
        self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def deadline(self) -> float:
        """Monotonic time at which the lifetime runs out."""
        return self.created_at + self.lifetime

    @property
    def age(self) -> float:
        return time.monotonic() - self.created_at

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def aborted(self) -> bool:
        """True once abort() has been called."""
        return self._aborted

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete request: head, blank line, Content-Length body.

        Bytes after the request stay buffered for the next call, so
        pipelined requests are not lost.

        Returns:
            Raw request bytes, or None if the client closed the connection
            (or went idle on keep-alive) before sending anything.

        Raises:
            TimeoutError: First request timed out with nothing received.
            IncompleteRequest: EOF or timeout after a partial request.
            RequestTooLarge: Over max_request_size.
        """
        self.state = ConnectionState.READING
        idle_timeout = self.keep_alive_timeout if self.requests_handled else self.timeout

        try:
            # ─────── head ───────
            while True:
                header_end = self._buffer.find(b"\r\n\r\n")
                if header_end != -1:
                    break
                if len(self._buffer) > self.max_request_size:
                    raise RequestTooLarge(f"Request head over {self.max_request_size} bytes")
                if not self._fill(idle_timeout):
                    if self._buffer:
                        raise IncompleteRequest("Connection closed mid-request")
                    return None

            # ─────── body ───────
            body_start = header_end + 4
            content_length = self._content_length(bytes(self._buffer[:header_end]))
            request_end = body_start + content_length

            if request_end > self.max_request_size:
                raise RequestTooLarge(f"Request of {request_end} bytes over limit")

            while len(self._buffer) < request_end:
                if not self._fill(self.timeout):
                    raise IncompleteRequest("Connection closed mid-body")

        except socket.timeout:
            if self._buffer:
                raise IncompleteRequest("Timed out mid-request")
            if self.requests_handled:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        request_data = bytes(self._buffer[:request_end])
        del self._buffer[:request_end]
        self.requests_handled += 1
        return request_data

    def _fill(self, idle_timeout: float) -> bool:
        """
        recv() once into the buffer.

        Returns:
            False on EOF.

        Raises:
            socket.timeout: Idle timeout, or lifetime exhausted.
        """
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("Connection lifetime exceeded")

        self.socket.settimeout(min(idle_timeout, remaining))
        try:
            chunk = self.socket.recv(self.buffer_size)
        except (ConnectionResetError, BrokenPipeError):
            return False
        except OSError:
            if self._aborted:
                return False
            raise

        if not chunk:
            return False
        self._buffer += chunk
        return True

    @staticmethod
    def _content_length(head: bytes) -> int:
        """
        Content-Length from the raw head, 0 when absent or malformed.

        Only used to know how many bytes to read; RequestParser validates
        the header properly and rejects malformed values.
        """
        for line in head.split(b"\r\n")[1:]:
            name, sep, value = line.partition(b":")
            if sep and name.strip().lower() == b"content-length":
                value = value.strip()
                return int(value) if value.isdigit() else 0
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send(self, data: bytes) -> bool:
        """
        Send bytes with sendall().

        Returns:
            False if the peer went away or the send timed out.
        """
        self.state = ConnectionState.RESPONDING
        try:
            self.socket.sendall(data)
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def send_file(self, fileobj: BinaryIO, length: int) -> bool:
        """
        Send length bytes of an open file, zero-copy where the OS allows.

        Returns:
            False if the peer went away, the send timed out, or the file
            came up short.
        """
        self.state = ConnectionState.RESPONDING
        try:
            sent = self.socket.sendfile(fileobj, 0, length)
        except OSError as e:
            logger.debug(f"[{self.id}] sendfile failed: {e}")
            return False
        if sent != length:
            logger.warning(f"[{self.id}] File shrank while sending: {sent}/{length} bytes")
            return False
        return True

    # =========================================================================
    # CLOSING
    # =========================================================================

    def mark_keep_alive(self) -> None:
        self.state = ConnectionState.KEEP_ALIVE

    def abort(self) -> None:
        """
        Cut the connection from another thread.

        shutdown() wakes any recv()/send() blocked on this socket; the
        owning worker then unwinds and calls close(). The descriptor
        itself is only closed by the owner.
        """
        if self.is_closed:
            return
        self._aborted = True
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        logger.warning(f"[{self.id}] Aborted {self.client_ip} after {self.age:.1f}s")

    def close(self) -> None:
        """
        Close gracefully: FIN, brief drain, release the descriptor.

        Idempotent and safe to call from any exit path.
        """
        with self._close_lock:
            if self.state == ConnectionState.CLOSED:
                return
            self.state = ConnectionState.CLOSED

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        # Drain so the kernel does not answer unread data with RST.
        # One overall deadline, however fast the peer keeps sending.
        drain_until = time.monotonic() + DRAIN_TIMEOUT
        try:
            while True:
                remaining = drain_until - time.monotonic()
                if remaining <= 0:
                    break
                self.socket.settimeout(remaining)
                if not self.socket.recv(self.buffer_size):
                    break
        except OSError:
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        logger.debug(f"[{self.id}] Closed after {self.requests_handled} requests")

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
