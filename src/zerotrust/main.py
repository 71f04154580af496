"""
Zerotrust - Main entry point for the application.

Three modes:
- server: plaintext echo server for reachability checks
- client: one request/reply against an echo server
- interactive (alias peer): encrypted two-party chat
"""

import argparse
import logging
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from . import __version__
from .config import Config
from .constants import (
    APP_NAME,
    DEFAULT_PEER_PORT,
    LOCALHOST,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    LOG_MAX_BYTES,
)
from .echo import EchoClient, EchoServer
from .errors import ConnectionFailedError, ZeroTrustError
from .session import PeerSession, SessionEvents
from .session_fsm import SessionState

logger = logging.getLogger(__name__)

DEFAULT_CLIENT_MESSAGE = "Hello from Zerotrust client!"

CHAT_COMMANDS = {
    "/help": "Show this help message",
    "/quit": "Close connection and exit",
    "/exit": "Same as /quit",
    "/close": "Same as /quit",
    "/status": "Show connection status",
    "/clear": "Clear screen",
}

_QUIT_COMMANDS = ("/quit", "/exit", "/close")


def setup_logging(level: str = "WARNING", log_file: Optional[str] = None, console: Optional[Console] = None) -> None:
    """
    Configure the zerotrust logger hierarchy.

    Console records go through rich on stderr; an optional rotating file
    receives the same records in plain text.
    """
    root = logging.getLogger("zerotrust")
    root.setLevel(getattr(logging, str(level).upper(), logging.WARNING))
    root.handlers.clear()
    root.propagate = False

    handler = RichHandler(
        console=console or Console(stderr=True),
        show_path=False,
        rich_tracebacks=True,
        log_time_format=LOG_DATE_FORMAT,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(handler)

    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
        root.addHandler(file_handler)


class ChatConsole:
    """
    Line-based chat loop over an active session.

    The calling thread reads user input and sends; a daemon thread polls the
    session's inbound queue and prints what arrives.
    """

    POLL_INTERVAL = 0.2

    def __init__(
        self,
        session: PeerSession,
        local_name: Optional[str] = None,
        remote_name: Optional[str] = None,
        console: Optional[Console] = None,
        input_func: Optional[Callable[[str], str]] = None,
    ):
        self.session = session
        self.local_name = local_name or session.local_id
        self.remote_name = remote_name or "Remote"
        self.console = console or Console()
        self._input = input_func or self.console.input
        self.running = threading.Event()
        self._receiver: Optional[threading.Thread] = None

    @property
    def prompt(self) -> str:
        return f"{self.local_name}> "

    def handle_input(self, line: str) -> bool:
        """
        Process one line of user input.

        Returns:
            False when the chat should end
        """
        line = line.strip()
        if not line:
            return True
        if line.startswith("/"):
            return self.handle_command(line)

        try:
            self.session.send(line)
        except ZeroTrustError as e:
            self.console.print(f"[red]Error sending message:[/] {e.message}")
        return True

    def handle_command(self, command: str) -> bool:
        """
        Run a chat command.

        Returns:
            False for the quit commands, True otherwise
        """
        command = command.lower()

        if command in _QUIT_COMMANDS:
            self.console.print("\nClosing connection...")
            return False

        if command == "/help":
            table = Table(title="Available Commands", show_header=True, header_style="bold cyan")
            table.add_column("Command", style="yellow")
            table.add_column("Description")
            for name, description in CHAT_COMMANDS.items():
                table.add_row(name, description)
            self.console.print(table)
        elif command == "/status":
            self.console.print(self.status_table())
        elif command == "/clear":
            self.console.clear()
        else:
            self.console.print(f"[red]Unknown command:[/] {escape(command)}")
            self.console.print("Type '/help' for available commands")
        return True

    def status_table(self) -> Table:
        stats = self.session.get_statistics()
        table = Table(title="Connection Status", show_header=True, header_style="bold magenta")
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Local peer", self.local_name)
        table.add_row("Remote peer", self.remote_name)
        table.add_row("State", stats["state"])
        if stats["encrypted"]:
            table.add_row("Encryption", f"AES-256-GCM ({stats['key_exchange_group']} key exchange)")
        else:
            table.add_row("Encryption", "[red]none[/]")
        table.add_row("Messages sent", str(stats["messages_sent"]))
        table.add_row("Messages received", str(stats["messages_received"]))
        return table

    def _receive_loop(self) -> None:
        while self.running.is_set():
            message = self.session.receive(timeout=self.POLL_INTERVAL)
            if message is not None:
                self.console.print(Text.assemble((f"{self.remote_name}: ", "bold cyan"), message))
                continue
            if self.session.state is SessionState.FAILED:
                self.console.print(f"\n[yellow]Connection to {escape(self.remote_name)} lost. Press Enter to exit.[/]")
                self.running.clear()

    def run(self) -> None:
        """Run until a quit command, end of input, or the connection drops."""
        self.running.set()
        self._receiver = threading.Thread(target=self._receive_loop, name="zerotrust-chat-receiver", daemon=True)
        self._receiver.start()

        self.console.print("Type messages to send (commands: /help, /quit)\n")
        try:
            while self.running.is_set():
                try:
                    line = self._input(self.prompt)
                except EOFError:
                    break
                if not self.running.is_set() or not self.handle_input(line):
                    break
        finally:
            self.running.clear()
            self._receiver.join(timeout=self.POLL_INTERVAL * 5)


def run_server(port: int, console: Console) -> int:
    """Serve one echo client, then exit."""
    console.print(f"Starting {APP_NAME} echo server...")
    with EchoServer(port) as server:
        try:
            bound = server.bind()
        except ConnectionFailedError as e:
            console.print(f"[red]Error:[/] {e.message}")
            return 1
        console.print(f"Server started on port {bound}")
        try:
            count = server.accept_one_connection(on_line=lambda line: console.print(f"Received: {line}"))
        except ZeroTrustError as e:
            console.print(f"[red]Error:[/] {e.message}")
            return 1
    console.print(f"Client disconnected after {count} messages")
    return 0


def run_client(host: str, port: int, message: str, timeout: float, console: Console) -> int:
    """Send one line to an echo server and print the reply."""
    console.print(f"Starting {APP_NAME} echo client...")
    try:
        with EchoClient(host, port, timeout=timeout) as client:
            reply = client.request(message, timeout=timeout)
    except ZeroTrustError as e:
        console.print(f"[red]Error:[/] {e.message}")
        return 1
    console.print(f"Response: {reply}")
    return 0


def run_interactive(
    config: Config,
    name: Optional[str],
    port: int,
    role: str,
    remote_host: str,
    remote_port: int,
    console: Console,
    input_func: Optional[Callable[[str], str]] = None,
) -> int:
    """Establish an encrypted session as listener or connector, then chat."""
    name = name or f"AsyncPeer-{time.monotonic_ns() % 10000}"
    ready_timeout = config.get("network", "ready_timeout")
    handshake_timeout = config.get("network", "handshake_timeout")

    console.print(Panel.fit(f"{APP_NAME} Interactive Chat", style="bold green"))

    events = SessionEvents(on_error=lambda e: logger.warning(f"Session error: {e}"))
    try:
        session = PeerSession.from_config(name, config, port=port, events=events)
    except ZeroTrustError as e:
        console.print(f"[red]Error:[/] {e.message}")
        return 1

    with session:
        console.print(f"Peer {name} initialized on port {port}")
        try:
            if role == "listen":
                session.listen()
                console.print(f"Listening for incoming connections on port {session.local_port}...")
                session.connected.result()
            else:
                console.print(f"Connecting to {remote_host}:{remote_port}...")
                session.connect(remote_host, remote_port)
                if not session.wait_until_ready(ready_timeout):
                    error = session.last_error
                    if isinstance(error, ZeroTrustError):
                        raise error
                    raise ConnectionFailedError(
                        f"Connection not ready within {ready_timeout}s",
                        {"address": remote_host, "port": remote_port},
                    )
            console.print("Connection ready")

            console.print("Exchanging identifiers and keys...")
            remote_id = session.complete_handshake(timeout=handshake_timeout)
            console.print(f"Remote peer identified: [bold]{escape(remote_id)}[/]")
            console.print(f"Key exchange completed, session encrypted ({session.group.value})\n")
        except ZeroTrustError as e:
            console.print(f"[red]Error:[/] {e.message}")
            return 1

        ChatConsole(session, name, remote_id, console, input_func).run()

    console.print("Connection closed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="zerotrust",
        description=f"{APP_NAME} - Encrypted two-party peer messaging",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  zerotrust server                                   # Echo server on port 12345
  zerotrust client --message hi                      # One request to the echo server
  zerotrust interactive Alice 9000 listen            # Terminal 1
  zerotrust interactive Bob 9001 connect localhost 9000  # Terminal 2
        """,
    )

    parser.add_argument("--version", action="version", version=f"{APP_NAME} {__version__}")
    parser.add_argument("--config", type=str, default=None, help="Path to a TOML configuration file")
    parser.add_argument(
        "--log-level",
        type=str.upper,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (overrides configuration)",
    )
    parser.add_argument("--log-file", type=str, default=None, help="Write logs to a rotating file")

    modes = parser.add_subparsers(dest="mode")

    server = modes.add_parser("server", help="Start the plaintext echo server")
    server.add_argument("--port", type=int, default=None, help="Listen port (default: 12345)")

    client = modes.add_parser("client", help="Send one line to an echo server")
    client.add_argument("--host", type=str, default=LOCALHOST, help="Server address (default: 127.0.0.1)")
    client.add_argument("--port", type=int, default=None, help="Server port (default: 12345)")
    client.add_argument("--message", type=str, default=DEFAULT_CLIENT_MESSAGE, help="Line to send")

    interactive = modes.add_parser("interactive", aliases=["peer"], help="Encrypted peer chat")
    interactive.add_argument("name", nargs="?", default=None, help="Local peer name (default: AsyncPeer-<n>)")
    interactive.add_argument("port", nargs="?", type=int, default=None, help="Local port (default: 9000)")
    interactive.add_argument("role", nargs="?", default="listen", choices=["listen", "connect"])
    interactive.add_argument("host", nargs="?", default="localhost", help="Remote host for connect")
    interactive.add_argument(
        "remote_port", nargs="?", type=int, default=DEFAULT_PEER_PORT, help="Remote port for connect"
    )

    return parser


def main(argv=None) -> int:
    """Main entry point for Zerotrust."""
    parser = build_parser()
    args = parser.parse_args(argv)
    console = Console()

    try:
        config = Config(Path(args.config).expanduser() if args.config else None)
    except ZeroTrustError as e:
        console.print(f"[red]Configuration error:[/] {e.message}")
        return 1

    setup_logging(
        args.log_level or config.get("logging", "level"),
        args.log_file or config.get("logging", "file") or None,
    )

    if args.mode is None:
        console.print(f"{APP_NAME} - mode not specified. Use one of the following:\n")
        parser.print_help()
        return 1

    try:
        if args.mode == "server":
            port = args.port if args.port is not None else config.get("echo", "port")
            return run_server(port, console)
        if args.mode == "client":
            port = args.port if args.port is not None else config.get("echo", "port")
            return run_client(args.host, port, args.message, config.get("network", "connect_timeout"), console)

        port = args.port if args.port is not None else config.get("network", "port")
        return run_interactive(config, args.name, port, args.role, args.host, args.remote_port, console)
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
