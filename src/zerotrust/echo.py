"""
Zerotrust - Plaintext line echo server and client.

A minimal diagnostic pair for checking reachability between two hosts
before starting an encrypted session. Traffic is NOT encrypted.

The server accepts one client and answers every line with "Echo: <line>"
until the client disconnects.
"""

import logging
from typing import Callable, Optional

from .constants import CONNECT_TIMEOUT, DEFAULT_ECHO_PORT, DEFAULT_HOST, ECHO_REPLY_PREFIX, LOCALHOST
from .errors import ConnectionFailedError
from .transport import LineTransport, accept_one, connect_to, listen_socket

logger = logging.getLogger(__name__)


class EchoServer:
    """Single-client echo server."""

    def __init__(self, port: int = DEFAULT_ECHO_PORT, host: str = DEFAULT_HOST):
        self.port = port
        self.host = host
        self._server_sock = None
        self._transport: Optional[LineTransport] = None
        self._stopped = False

    def bind(self) -> int:
        """
        Start listening.

        Returns:
            The bound port (useful when port 0 was requested)

        Raises:
            ConnectionFailedError: If the port cannot be bound
        """
        self._server_sock = listen_socket(self.port, self.host)
        self.port = self._server_sock.getsockname()[1]
        logger.info(f"Echo server started on port {self.port}")
        return self.port

    def accept_one_connection(self, on_line: Optional[Callable[[str], None]] = None) -> int:
        """
        Accept one client and echo its lines until it disconnects.

        Args:
            on_line: Called with each received line before replying

        Returns:
            Number of lines echoed
        """
        if self._server_sock is None:
            self.bind()

        transport = accept_one(self._server_sock, should_stop=lambda: self._stopped)
        if transport is None:
            return 0
        self._transport = transport
        logger.info(f"Echo client connected: {transport.peer_address}")

        count = 0
        while True:
            line = transport.read_line()
            if line is None:
                break
            logger.debug(f"Echo received: {line}")
            if on_line is not None:
                on_line(line)
            transport.write_line(f"{ECHO_REPLY_PREFIX}{line}")
            count += 1

        logger.info(f"Echo client disconnected after {count} lines")
        return count

    def close(self) -> None:
        """Close the client connection and the listening socket."""
        self._stopped = True
        if self._transport is not None:
            self._transport.close()
        if self._server_sock is not None:
            try:
                self._server_sock.close()
            except OSError as e:
                logger.debug(f"Error closing echo server socket: {e}")
            self._server_sock = None

    def __enter__(self) -> "EchoServer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class EchoClient:
    """Connects to an echo server and exchanges plain lines."""

    def __init__(self, address: str = LOCALHOST, port: int = DEFAULT_ECHO_PORT, timeout: float = CONNECT_TIMEOUT):
        """
        Raises:
            ConnectionFailedError: If the server cannot be reached
        """
        self.address = address
        self.port = port
        self._transport = connect_to(address, port, timeout=timeout)

    def send(self, message: str) -> None:
        self._transport.write_line(message)

    def receive_one_line(self, timeout: Optional[float] = None) -> Optional[str]:
        """Read one reply line, or None if the server closed the connection."""
        return self._transport.read_line(timeout=timeout)

    def request(self, message: str, timeout: Optional[float] = None) -> str:
        """
        Send one line and wait for its reply.

        Raises:
            ConnectionFailedError: If the server closed before replying
        """
        self.send(message)
        reply = self.receive_one_line(timeout=timeout)
        if reply is None:
            raise ConnectionFailedError(
                "Echo server closed the connection before replying",
                {"address": self.address, "port": self.port},
            )
        return reply

    def close(self) -> None:
        self._transport.close()

    def __enter__(self) -> "EchoClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
