"""
Zerotrust - Line-oriented TCP transport and connection establishment helpers.

This module implements:
- LineTransport: one exclusively owned TCP socket carrying newline-terminated
  UTF-8 lines, with a single serialized writer
- listen_socket / accept_one: bind a listening endpoint and accept exactly one peer
- connect_to: dial a remote address with a timeout

Closing a LineTransport shuts the socket down first, which reliably wakes a
thread blocked in read_line() on every platform.
"""

import contextlib
import logging
import socket
import threading
from typing import Callable, Optional, Tuple

from .constants import (
    CONNECT_TIMEOUT,
    DEFAULT_HOST,
    LINE_ENCODING,
    LINE_TERMINATOR,
    LISTEN_BACKLOG,
    MAX_LINE_LENGTH,
    READY_POLL_INTERVAL,
)
from .errors import ConnectionFailedError, ErrorCode, TransportError

logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = READY_POLL_INTERVAL * 4


class LineTransport:
    """A TCP connection framed as newline-terminated text lines."""

    def __init__(self, sock: socket.socket, peer_address: Optional[Tuple[str, int]] = None):
        self._sock = sock
        self._reader = sock.makefile("rb")
        self._write_lock = threading.Lock()
        self._close_lock = threading.Lock()
        self._closed = False
        self.peer_address = peer_address

    @property
    def closed(self) -> bool:
        return self._closed

    def is_open(self) -> bool:
        """Check if the transport has not been closed locally."""
        return not self._closed

    def read_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Block until one full line arrives.

        Args:
            timeout: Seconds to wait, or None to wait indefinitely

        Returns:
            The line without its terminator, or None on end of stream

        Raises:
            TransportError: On I/O failure, timeout, oversized or non-UTF-8 line
        """
        try:
            self._sock.settimeout(timeout)
            raw = self._reader.readline(MAX_LINE_LENGTH + 1)
        except socket.timeout as e:
            raise TransportError(
                f"Timed out after {timeout}s waiting for a line",
                code=ErrorCode.E202_CONNECTION_TIMEOUT,
            ) from e
        except (OSError, ValueError) as e:
            # ValueError: reader already closed by close()
            if self._closed:
                return None
            raise TransportError(f"Read failed: {e}", code=ErrorCode.E205_RECEIVE_FAILED) from e

        if not raw:
            return None
        if len(raw) > MAX_LINE_LENGTH and not raw.endswith(b"\n"):
            raise TransportError(
                f"Line exceeds {MAX_LINE_LENGTH} bytes",
                code=ErrorCode.E207_MESSAGE_TOO_LARGE,
            )

        try:
            return raw.decode(LINE_ENCODING).rstrip("\r\n")
        except UnicodeDecodeError as e:
            raise TransportError(
                "Received line is not valid UTF-8",
                code=ErrorCode.E206_INVALID_MESSAGE,
            ) from e

    def write_line(self, line: str) -> None:
        """
        Write one line. Concurrent callers are serialized so lines never interleave.

        Raises:
            ValueError: If the line contains a line break
            TransportError: If the transport is closed or the write fails
        """
        if "\n" in line or "\r" in line:
            raise ValueError("Protocol lines must not contain line breaks")

        data = (line + LINE_TERMINATOR).encode(LINE_ENCODING)
        with self._write_lock:
            if self._closed:
                raise TransportError("Transport is closed", code=ErrorCode.E204_SEND_FAILED)
            try:
                self._sock.sendall(data)
            except OSError as e:
                raise TransportError(f"Write failed: {e}", code=ErrorCode.E204_SEND_FAILED) from e

    def close(self) -> None:
        """Shut down and close the socket. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        with contextlib.suppress(OSError):
            self._sock.shutdown(socket.SHUT_RDWR)
        with contextlib.suppress(OSError):
            self._reader.close()
        with contextlib.suppress(OSError):
            self._sock.close()
        logger.debug(f"Transport to {self.peer_address} closed")

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"LineTransport(peer={self.peer_address}, {state})"


def listen_socket(port: int, host: str = DEFAULT_HOST) -> socket.socket:
    """
    Bind a listening TCP endpoint that will accept a single peer.

    Raises:
        ConnectionFailedError: If the address cannot be bound
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        sock.listen(LISTEN_BACKLOG)
    except OSError as e:
        sock.close()
        raise ConnectionFailedError(
            f"Failed to listen on {host}:{port}: {e}",
            {"host": host, "port": port},
        ) from e

    logger.debug(f"Listening on {host}:{sock.getsockname()[1]}")
    return sock


def accept_one(
    server_sock: socket.socket,
    should_stop: Optional[Callable[[], bool]] = None,
) -> Optional[LineTransport]:
    """
    Wait for exactly one inbound connection.

    The accept is polled so that a concurrent close can abandon the wait.

    Args:
        server_sock: Socket returned by listen_socket()
        should_stop: Checked between polls; returning True abandons the wait

    Returns:
        LineTransport for the accepted peer, or None if abandoned

    Raises:
        ConnectionFailedError: If accept fails
    """
    server_sock.settimeout(ACCEPT_POLL_INTERVAL)
    while True:
        if should_stop is not None and should_stop():
            return None
        try:
            conn, address = server_sock.accept()
        except socket.timeout:
            continue
        except OSError as e:
            if should_stop is not None and should_stop():
                return None
            raise ConnectionFailedError(f"Accept failed: {e}") from e

        conn.settimeout(None)
        logger.debug(f"Accepted connection from {address}")
        return LineTransport(conn, address)


def connect_to(address: str, port: int, timeout: float = CONNECT_TIMEOUT) -> LineTransport:
    """
    Dial a remote peer.

    Raises:
        ConnectionFailedError: If the connection is refused, unreachable or times out
    """
    try:
        sock = socket.create_connection((address, port), timeout=timeout)
    except socket.timeout as e:
        raise ConnectionFailedError(
            f"Connection to {address}:{port} timed out after {timeout}s",
            {"address": address, "port": port},
            code=ErrorCode.E202_CONNECTION_TIMEOUT,
        ) from e
    except OSError as e:
        raise ConnectionFailedError(
            f"Connection to {address}:{port} failed: {e}",
            {"address": address, "port": port},
        ) from e

    sock.settimeout(None)
    logger.debug(f"Connected to {address}:{port}")
    return LineTransport(sock, (address, port))
