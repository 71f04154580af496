"""
Zerotrust - Encrypted two-party peer session.

This module implements the session orchestrator:
- Asynchronous connection establishment as listener or initiator
- Identifier exchange (PEER_ID:<id> lines)
- Ephemeral key exchange and session-key derivation
- A background pump that decrypts inbound lines into a FIFO for the consumer
- Serialized, encrypted outbound sends
- Idempotent teardown from any state

Concurrency model:
- A small fixed-size worker pool runs establishment, handshake steps and
  inbound message dispatch
- A single-thread writer executor runs sends, so sequential send() calls
  reach the wire in call order
- One dedicated daemon thread runs the pump's blocking read; closing the
  transport is what stops it

Completion is observable through futures (`connected`, and the futures
returned by perform_key_exchange() and send()) and through the optional
SessionEvents sink supplied at construction, so no event can fire before
its observer is registered.

Security note: identifiers and public values are exchanged in the clear and
are not authenticated. An active on-path attacker can substitute public
values and read or alter all traffic (man-in-the-middle).
"""

import logging
import queue
import threading
import time
from concurrent.futures import CancelledError, Future, InvalidStateError, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .cipher import decrypt, derive_key, encrypt, encrypted_length
from .constants import (
    CONNECT_READY_TIMEOUT,
    CONNECT_TIMEOUT,
    DEFAULT_HOST,
    DEFAULT_KEY_EXCHANGE_GROUP,
    HANDSHAKE_TIMEOUT,
    LOG_PREVIEW_LENGTH,
    MAX_LINE_LENGTH,
    PEER_ID_PREFIX,
    PUMP_JOIN_TIMEOUT,
    READY_POLL_INTERVAL,
    SESSION_WORKER_THREADS,
)
from .errors import (
    ConnectionFailedError,
    DecryptionError,
    EncryptionError,
    HandshakeError,
    InvalidPeerKeyError,
    KeyGenerationError,
    ProtocolError,
    SessionStateError,
    TransportError,
    ZeroTrustError,
)
from .key_exchange import KeyExchange, KeyExchangeGroup
from .session_fsm import SessionEvent, SessionState, SessionStateMachine
from .transport import LineTransport, accept_one, connect_to, listen_socket

logger = logging.getLogger(__name__)


@dataclass
class SessionEvents:
    """
    Event sink supplied when a session is constructed.

    Every callback is optional. Callbacks run on session worker threads
    (on_message) or on whichever thread caused the event; exceptions they
    raise are logged and otherwise ignored.
    """

    on_connected: Optional[Callable[["PeerSession"], None]] = None
    on_message: Optional[Callable[[str], None]] = None
    on_error: Optional[Callable[[Exception], None]] = None
    on_state_change: Optional[Callable[[SessionState, SessionState], None]] = None


# Placeholder marking a key exchange as started before its key pair exists
_PENDING = object()


def _preview(message: str) -> str:
    if len(message) > LOG_PREVIEW_LENGTH:
        return message[:LOG_PREVIEW_LENGTH] + "..."
    return message


class PeerSession:
    """One end of an encrypted two-party session over a single TCP connection."""

    def __init__(
        self,
        local_id: str,
        port: int = 0,
        events: Optional[SessionEvents] = None,
        *,
        host: str = DEFAULT_HOST,
        group: KeyExchangeGroup = KeyExchangeGroup.X25519,
        worker_threads: int = SESSION_WORKER_THREADS,
        connect_timeout: float = CONNECT_TIMEOUT,
        handshake_timeout: Optional[float] = HANDSHAKE_TIMEOUT,
        close_join_timeout: float = PUMP_JOIN_TIMEOUT,
    ):
        """
        Create a session in the CREATED state. No socket is opened yet.

        Args:
            local_id: Label sent to the peer during identifier exchange
            port: Local port to listen on (0 picks a free port)
            events: Optional event sink
            host: Local interface to listen on
            group: Key agreement group; both peers must use the same one
            worker_threads: Size of the session's worker pool
            connect_timeout: Seconds allowed for an outbound dial
            handshake_timeout: Seconds allowed for each handshake read (None waits forever)
            close_join_timeout: Seconds close() waits for the pump thread

        Raises:
            ProtocolError: If local_id is empty or contains a line break
        """
        if not isinstance(local_id, str) or not local_id or "\n" in local_id or "\r" in local_id:
            raise ProtocolError(
                "Local identifier must be a non-empty single-line string",
                {"local_id": repr(local_id)},
            )

        self._local_id = local_id
        self.port = port
        self.host = host
        self.group = group
        self.events = events or SessionEvents()
        self.connect_timeout = connect_timeout
        self.handshake_timeout = handshake_timeout
        self.close_join_timeout = close_join_timeout

        self.remote_id: Optional[str] = None
        self.local_port: Optional[int] = None
        self.last_error: Optional[Exception] = None

        self._fsm = SessionStateMachine(name=local_id, on_state_change=self._on_fsm_state_change)
        self._lock = threading.Lock()
        self._handshake_lock = threading.Lock()
        self._transport: Optional[LineTransport] = None
        self._server_sock = None
        self._key_exchange: Optional[KeyExchange] = None
        self._session_key: Optional[bytes] = None
        self._pump_thread: Optional[threading.Thread] = None
        self._inbound: "queue.Queue[str]" = queue.Queue()

        self._executor = ThreadPoolExecutor(
            max_workers=worker_threads, thread_name_prefix=f"zerotrust-{local_id}"
        )
        self._writer = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=f"zerotrust-{local_id}-writer"
        )

        # Resolved with this session once a transport exists
        self.connected: "Future[PeerSession]" = Future()

        self.messages_sent = 0
        self.messages_received = 0

        logger.info(f"PeerSession {local_id} created (port {port}, group {group.value})")

    @classmethod
    def from_config(
        cls,
        local_id: str,
        config,
        port: Optional[int] = None,
        events: Optional[SessionEvents] = None,
    ) -> "PeerSession":
        """
        Build a session from a Config instance.

        Args:
            local_id: Local identifier
            config: zerotrust.config.Config
            port: Listen port; defaults to the configured network.port
            events: Optional event sink
        """
        group_name = config.get("session", "key_exchange_group", DEFAULT_KEY_EXCHANGE_GROUP)
        return cls(
            local_id,
            port if port is not None else config.get("network", "port", 0),
            events,
            host=config.get("network", "host", DEFAULT_HOST),
            group=KeyExchangeGroup.from_name(group_name),
            worker_threads=config.get("session", "worker_threads", SESSION_WORKER_THREADS),
            connect_timeout=config.get("network", "connect_timeout", CONNECT_TIMEOUT),
            handshake_timeout=config.get("network", "handshake_timeout", HANDSHAKE_TIMEOUT),
            close_join_timeout=config.get("session", "close_join_timeout", PUMP_JOIN_TIMEOUT),
        )

    # Properties

    @property
    def local_id(self) -> str:
        return self._local_id

    @property
    def state(self) -> SessionState:
        return self._fsm.state

    @property
    def session_key(self) -> Optional[bytes]:
        """The derived key, present only once the handshake has completed."""
        if not self._fsm.is_keyed():
            return None
        return self._session_key

    def is_encrypted(self) -> bool:
        """Check if a session key has been established."""
        return self.session_key is not None

    def is_connected(self) -> bool:
        """Check if the session owns a live transport."""
        transport = self._transport
        return self._fsm.has_transport() and transport is not None and transport.is_open()

    def pending(self) -> int:
        """Number of decrypted messages waiting in the inbound queue."""
        return self._inbound.qsize()

    # Connection establishment

    def listen(self) -> "Future[PeerSession]":
        """
        Bind the session's port and accept exactly one peer in the background.

        Binding happens immediately; the accept runs on a worker.

        Returns:
            The `connected` future

        Raises:
            SessionStateError: If the session is not in CREATED
            ConnectionFailedError: If the port cannot be bound
        """
        if not self._fsm.transition(SessionEvent.LISTEN_REQUESTED):
            raise SessionStateError(
                f"Cannot listen from state {self.state.name}", {"state": self.state.name}
            )

        try:
            server_sock = listen_socket(self.port, self.host)
        except ConnectionFailedError as e:
            self._fail(e, notify=False)
            raise

        with self._lock:
            self._server_sock = server_sock
        self.local_port = server_sock.getsockname()[1]
        logger.info(f"PeerSession {self.local_id} listening on port {self.local_port}")

        self._executor.submit(self._accept_task, server_sock)
        return self.connected

    def connect(self, address: str, port: int) -> "Future[PeerSession]":
        """
        Dial a remote peer in the background.

        Failures (refused, unreachable, timeout) move the session to FAILED
        and are delivered to the error sink and the `connected` future.

        Returns:
            The `connected` future

        Raises:
            SessionStateError: If the session is not in CREATED
        """
        if not self._fsm.transition(SessionEvent.CONNECT_REQUESTED):
            raise SessionStateError(
                f"Cannot connect from state {self.state.name}", {"state": self.state.name}
            )

        logger.info(f"PeerSession {self.local_id} connecting to {address}:{port}")
        self._executor.submit(self._connect_task, address, port)
        return self.connected

    def wait_until_ready(self, timeout: float = CONNECT_READY_TIMEOUT) -> bool:
        """
        Block until the session owns a live transport.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if connected, False on timeout or if the session failed or closed
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.is_connected():
                return True
            if self._fsm.is_terminal() or time.monotonic() >= deadline:
                return False
            time.sleep(READY_POLL_INTERVAL)

    def _accept_task(self, server_sock) -> None:
        try:
            transport = accept_one(server_sock, should_stop=self._fsm.is_terminal)
        except ConnectionFailedError as e:
            self._fail(e)
            return
        finally:
            self._close_server_socket()

        if transport is None:
            self._reject(self.connected, SessionStateError("Session closed before a peer connected"))
            return

        logger.info(f"PeerSession {self.local_id} accepted connection from {transport.peer_address}")
        self._attach_transport(transport)

    def _connect_task(self, address: str, port: int) -> None:
        try:
            transport = connect_to(address, port, timeout=self.connect_timeout)
        except ConnectionFailedError as e:
            self._fail(e)
            return

        logger.info(f"PeerSession {self.local_id} connected to {address}:{port}")
        self._attach_transport(transport)

    def _attach_transport(self, transport: LineTransport) -> None:
        with self._lock:
            if self._transport is not None:
                # One transport per session, ever
                transport.close()
                return
            self._transport = transport

        if not self._fsm.transition(SessionEvent.TRANSPORT_ESTABLISHED):
            transport.close()
            self._reject(self.connected, SessionStateError("Session closed during connection setup"))
            return

        self._notify("on_connected", self)
        self._resolve(self.connected, self)

    def _close_server_socket(self) -> None:
        with self._lock:
            server_sock, self._server_sock = self._server_sock, None
        if server_sock is not None:
            try:
                server_sock.close()
            except OSError as e:
                logger.debug(f"Error closing listening socket: {e}")

    # Handshake

    def exchange_ids(self) -> str:
        """
        Send our identifier and read the peer's.

        Both ends must call this after the transport is ready. Each side
        writes before it reads; socket buffering makes the order safe.

        Returns:
            The remote identifier

        Raises:
            SessionStateError: If the session is not CONNECTED
            ProtocolError: If the peer's line is absent, times out or lacks the prefix
        """
        with self._handshake_lock:
            transport = self._require_transport(SessionState.CONNECTED)
            try:
                transport.write_line(f"{PEER_ID_PREFIX}{self.local_id}")
                line = transport.read_line(timeout=self.handshake_timeout)
            except TransportError as e:
                error = ProtocolError(f"Identifier exchange failed: {e.message}")
                self._fail(error, notify=False)
                raise error from e

            if line is None or not line.startswith(PEER_ID_PREFIX):
                error = ProtocolError(
                    "Invalid identifier exchange line",
                    {"line": None if line is None else _preview(line)},
                )
                self._fail(error, notify=False)
                raise error

            remote_id = line[len(PEER_ID_PREFIX):]
            if not remote_id:
                error = ProtocolError("Peer sent an empty identifier")
                self._fail(error, notify=False)
                raise error

            self.remote_id = remote_id
            if not self._fsm.transition(SessionEvent.IDS_EXCHANGED):
                raise SessionStateError("Session closed during identifier exchange")

        logger.info(f"PeerSession {self.local_id} identified remote peer {remote_id}")
        return remote_id

    def exchange_ids_async(self) -> "Future[str]":
        """Run exchange_ids() on a worker; failures also go to the error sink."""
        return self._submit(self._exchange_ids_task)

    def _exchange_ids_task(self) -> str:
        try:
            return self.exchange_ids()
        except ZeroTrustError as e:
            self._notify_error(e)
            raise

    def perform_key_exchange(self, on_complete: Optional[Callable[[], None]] = None) -> "Future[bool]":
        """
        Run the key exchange in the background, then start the message pump.

        Args:
            on_complete: Called once the session is keyed and the pump runs

        Returns:
            Future resolving to True on success, or raising the handshake error

        Raises:
            SessionStateError: If identifiers have not been exchanged or the
                key exchange was already started
        """
        with self._lock:
            if self.state is not SessionState.ID_EXCHANGED or self._key_exchange is not None:
                raise SessionStateError(
                    f"Cannot start key exchange from state {self.state.name}",
                    {"state": self.state.name},
                )
            self._key_exchange = _PENDING

        try:
            key_exchange = KeyExchange(self.group)
        except KeyGenerationError as e:
            self._fail(e, notify=False)
            raise
        self._key_exchange = key_exchange

        return self._submit(self._key_exchange_task, on_complete)

    def _key_exchange_task(self, on_complete: Optional[Callable[[], None]]) -> bool:
        logger.info(f"PeerSession {self.local_id} starting key exchange")
        with self._handshake_lock:
            transport = self._transport
            try:
                transport.write_line(self._key_exchange.public_value())
                peer_value = transport.read_line(timeout=self.handshake_timeout)
                if peer_value is None:
                    raise HandshakeError("Peer closed the connection during key exchange")
                if not peer_value.strip():
                    raise HandshakeError("Peer sent an empty key exchange line")
                try:
                    shared_secret = self._key_exchange.compute_shared_secret(peer_value)
                except InvalidPeerKeyError as e:
                    raise HandshakeError(f"Invalid peer public value: {e.message}") from e
            except TransportError as e:
                error = HandshakeError(f"Key exchange I/O failed: {e.message}")
                self._fail(error)
                raise error from e
            except HandshakeError as e:
                self._fail(e)
                raise

            self._session_key = derive_key(shared_secret)
            if not self._fsm.transition(SessionEvent.KEY_ESTABLISHED):
                self._session_key = None
                raise SessionStateError("Session closed during key exchange")

        logger.info(f"PeerSession {self.local_id} key exchange completed")
        self._start_pump()
        self._fsm.transition(SessionEvent.PUMP_STARTED)

        if on_complete is not None:
            try:
                on_complete()
            except Exception as e:
                logger.error(f"Key exchange completion callback error: {e}", exc_info=True)
        return True

    def complete_handshake(self, timeout: Optional[float] = None) -> str:
        """
        Run identifier exchange and key exchange back to back, blocking.

        Returns:
            The remote identifier

        Raises:
            ProtocolError, HandshakeError, SessionStateError: As raised by the steps;
                a key exchange that outlives timeout is a HandshakeError
        """
        remote_id = self.exchange_ids()
        try:
            self.perform_key_exchange().result(timeout=timeout)
        except FutureTimeoutError as e:
            error = HandshakeError(
                f"Key exchange did not complete within {timeout}s",
                {"timeout": timeout},
            )
            self._fail(error)
            raise error from e
        except CancelledError as e:
            raise SessionStateError("Session closed during key exchange") from e
        return remote_id

    def _require_transport(self, expected: SessionState) -> LineTransport:
        state = self.state
        transport = self._transport
        if state is not expected or transport is None:
            raise SessionStateError(
                f"Expected state {expected.name}, session is {state.name}",
                {"state": state.name, "expected": expected.name},
            )
        return transport

    # Message pump

    def send(self, message: str, on_complete: Optional[Callable[[bool], None]] = None) -> "Future[bool]":
        """
        Encrypt and send one message in the background.

        Messages submitted by sequential calls are written in call order.

        Args:
            message: Single-line text
            on_complete: Called with True on success, False on failure

        Returns:
            Future resolving to the same success flag

        Raises:
            SessionStateError: If the session is not ACTIVE (no plaintext fallback)
            EncryptionError: If the message is not a single-line string, or its
                encrypted line would exceed the protocol line limit
        """
        if self.state is not SessionState.ACTIVE:
            raise SessionStateError(
                f"Cannot send from state {self.state.name}; handshake not complete",
                {"state": self.state.name},
            )
        if not isinstance(message, str):
            raise EncryptionError("Message must be a string", {"type": type(message).__name__})
        if "\n" in message or "\r" in message:
            raise EncryptionError("Message must not contain line breaks")
        line_length = encrypted_length(message)
        if line_length > MAX_LINE_LENGTH:
            raise EncryptionError(
                f"Message too long: encrypted line would be {line_length} bytes, limit is {MAX_LINE_LENGTH}",
                {"length": line_length, "limit": MAX_LINE_LENGTH},
            )

        try:
            return self._writer.submit(self._send_task, message, on_complete)
        except RuntimeError as e:
            raise SessionStateError("Session is closed") from e

    def _send_task(self, message: str, on_complete: Optional[Callable[[bool], None]]) -> bool:
        success = False
        key = self._session_key
        try:
            if key is None:
                raise TransportError("Session failed before the message was written")
            self._transport.write_line(encrypt(message, key))
            self.messages_sent += 1
            success = True
            logger.debug(f"PeerSession {self.local_id} sent message: {_preview(message)}")
        except EncryptionError as e:
            logger.error(f"Encryption failed for outbound message: {e}")
            self._notify_error(e)
        except TransportError as e:
            if self._fsm.is_terminal():
                logger.debug(f"Dropped send on closed session: {e}")
            else:
                logger.error(f"Send failed: {e}")
                self._fail(e)

        if on_complete is not None:
            try:
                on_complete(success)
            except Exception as e:
                logger.error(f"Send completion callback error: {e}", exc_info=True)
        return success

    def receive(self, timeout: Optional[float] = None) -> Optional[str]:
        """
        Pop the next decrypted message.

        Args:
            timeout: None or 0 for a non-blocking check, else seconds to wait

        Returns:
            The message, or None if nothing arrived in time
        """
        try:
            if not timeout or timeout <= 0:
                return self._inbound.get_nowait()
            return self._inbound.get(timeout=timeout)
        except queue.Empty:
            return None

    def _start_pump(self) -> None:
        if self._pump_thread is not None:
            return
        self._pump_thread = threading.Thread(
            target=self._pump_loop,
            name=f"zerotrust-{self.local_id}-pump",
            daemon=True,
        )
        self._pump_thread.start()

    def _pump_loop(self) -> None:
        """Background task: read, decrypt and enqueue lines until EOF, error or close."""
        logger.debug(f"Message pump started for {self.local_id}")
        transport = self._transport
        key = self._session_key
        try:
            while True:
                try:
                    line = transport.read_line()
                except TransportError as e:
                    if not self._fsm.is_terminal():
                        self._fail(e)
                    break

                if line is None:
                    if not self._fsm.is_terminal():
                        logger.warning(f"Connection closed by {self.remote_id}")
                        self._fail(TransportError(f"Connection closed by {self.remote_id}"))
                    break

                try:
                    plaintext = decrypt(line, key)
                except DecryptionError as e:
                    logger.warning(f"Dropping undecryptable message from {self.remote_id}: {e}")
                    self._notify_error(e)
                    continue

                self.messages_received += 1
                self._inbound.put(plaintext)
                if self.events.on_message is not None:
                    self._dispatch(plaintext)
        finally:
            logger.debug(f"Message pump ended for {self.local_id}")

    def _dispatch(self, plaintext: str) -> None:
        try:
            self._executor.submit(self._notify, "on_message", plaintext)
        except RuntimeError:
            logger.debug("Worker pool shut down, message callback skipped")

    # Teardown

    def close(self) -> None:
        """
        Release every resource the session owns. Idempotent, callable from any state.

        Closes the transport (which unblocks the pump), waits a bounded time
        for the pump to exit, then shuts the worker pools down.
        """
        if not self._fsm.transition(SessionEvent.CLOSE_REQUESTED):
            logger.debug(f"PeerSession {self.local_id} already closing or closed")
            return

        self._close_server_socket()
        with self._lock:
            transport = self._transport
        if transport is not None:
            transport.close()

        pump = self._pump_thread
        if pump is not None and pump is not threading.current_thread():
            pump.join(self.close_join_timeout)
            if pump.is_alive():
                logger.warning(f"Message pump for {self.local_id} did not exit within {self.close_join_timeout}s")

        self._writer.shutdown(wait=False, cancel_futures=True)
        self._executor.shutdown(wait=False, cancel_futures=True)

        self._reject(self.connected, SessionStateError("Session closed"))
        self._fsm.transition(SessionEvent.CLOSED)
        logger.info(f"PeerSession {self.local_id} closed")

    def __enter__(self) -> "PeerSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # Internal helpers

    def _submit(self, fn: Callable, *args) -> Future:
        try:
            return self._executor.submit(fn, *args)
        except RuntimeError as e:
            raise SessionStateError("Session is closed") from e

    def _fail(self, error: Exception, notify: bool = True) -> None:
        """Move to FAILED, release the transport and report the error."""
        self.last_error = error
        applied = self._fsm.transition(SessionEvent.ERROR_OCCURRED, error_msg=str(error))
        if applied:
            # A failed session never exposes or uses its key again, closed or not
            self._session_key = None
            logger.error(f"PeerSession {self.local_id} failed: {error}")

        self._close_server_socket()
        with self._lock:
            transport = self._transport
        if transport is not None:
            transport.close()

        self._reject(self.connected, error)
        if notify and applied:
            self._notify_error(error)

    def _notify_error(self, error: Exception) -> None:
        self.last_error = error
        self._notify("on_error", error)

    def _notify(self, name: str, *args: Any) -> None:
        callback = getattr(self.events, name, None)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception as e:
            logger.error(f"Session {name} callback error: {e}", exc_info=True)

    def _on_fsm_state_change(self, old_state: SessionState, new_state: SessionState) -> None:
        self._notify("on_state_change", old_state, new_state)

    @staticmethod
    def _resolve(future: Future, value: Any) -> None:
        try:
            future.set_result(value)
        except InvalidStateError:
            pass

    @staticmethod
    def _reject(future: Future, error: Exception) -> None:
        try:
            future.set_exception(error)
        except InvalidStateError:
            pass

    def get_statistics(self) -> Dict[str, Any]:
        """Get session statistics for diagnostics and the /status command."""
        transport = self._transport
        return {
            "local_id": self.local_id,
            "remote_id": self.remote_id,
            "state": self.state.name,
            "encrypted": self.is_encrypted(),
            "key_exchange_group": self.group.value,
            "local_port": self.local_port,
            "peer_address": transport.peer_address if transport is not None else None,
            "messages_sent": self.messages_sent,
            "messages_received": self.messages_received,
            "pending": self.pending(),
            "last_error": str(self.last_error) if self.last_error else None,
        }

    def __repr__(self) -> str:
        return (
            f"PeerSession(local_id={self.local_id!r}, remote_id={self.remote_id!r}, "
            f"state={self.state.name})"
        )
