"""
Zerotrust - Command-line interface tests.

Tests argument parsing, logging setup, chat command handling and the
server, client and interactive modes end to end.
"""

import io
import logging
import threading
from collections import deque

import pytest
from rich.console import Console

from zerotrust.config import Config
from zerotrust.constants import DEFAULT_PEER_PORT, LOCALHOST
from zerotrust.echo import EchoClient, EchoServer
from zerotrust.errors import SessionStateError, TransportError
from zerotrust.main import ChatConsole, build_parser, main, run_interactive, run_server, setup_logging
from zerotrust.session_fsm import SessionState
from zerotrust.transport import accept_one, listen_socket


def make_console():
    buffer = io.StringIO()
    return Console(file=buffer, width=120, force_terminal=False), buffer


class FakeSession:
    """Stands in for an ACTIVE PeerSession."""

    def __init__(self, incoming=()):
        self.local_id = "alice"
        self.sent = []
        self.incoming = deque(incoming)
        self.state = SessionState.ACTIVE
        self.fail_sends = False

    def send(self, message):
        if self.fail_sends:
            raise SessionStateError("Cannot send from state FAILED")
        self.sent.append(message)

    def receive(self, timeout=None):
        if self.incoming:
            return self.incoming.popleft()
        self.state = SessionState.FAILED
        return None

    def get_statistics(self):
        return {
            "state": self.state.name,
            "encrypted": True,
            "key_exchange_group": "x25519",
            "messages_sent": len(self.sent),
            "messages_received": 0,
        }


@pytest.fixture
def reset_logging():
    yield
    root = logging.getLogger("zerotrust")
    for handler in list(root.handlers):
        handler.close()
    root.handlers.clear()
    root.propagate = True
    root.setLevel(logging.NOTSET)


class TestParser:
    """Test command-line parsing."""

    def test_interactive_full(self):
        args = build_parser().parse_args(["interactive", "Bob", "9001", "connect", "example.org", "9000"])
        assert args.mode == "interactive"
        assert (args.name, args.port, args.role, args.host, args.remote_port) == (
            "Bob",
            9001,
            "connect",
            "example.org",
            9000,
        )

    def test_interactive_defaults(self):
        args = build_parser().parse_args(["peer"])
        assert args.name is None
        assert args.port is None
        assert args.role == "listen"
        assert args.host == "localhost"
        assert args.remote_port == DEFAULT_PEER_PORT

    def test_invalid_role(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["interactive", "Bob", "9001", "shout"])

    def test_global_options(self):
        args = build_parser().parse_args(["--log-level", "debug", "--log-file", "x.log", "server", "--port", "1"])
        assert args.log_level == "DEBUG"
        assert args.log_file == "x.log"
        assert args.port == 1

    def test_version(self, capsys):
        with pytest.raises(SystemExit) as exc_info:
            build_parser().parse_args(["--version"])
        assert exc_info.value.code == 0
        assert "Zerotrust" in capsys.readouterr().out


def test_setup_logging_file(temp_dir, reset_logging):
    log_file = temp_dir / "logs" / "zerotrust.log"
    setup_logging("DEBUG", str(log_file), console=Console(file=io.StringIO()))

    logging.getLogger("zerotrust.session").debug("written to file")
    for handler in logging.getLogger("zerotrust").handlers:
        handler.flush()

    text = log_file.read_text(encoding="utf-8")
    assert "written to file" in text
    assert "DEBUG" in text


def test_setup_logging_replaces_handlers(reset_logging):
    setup_logging("INFO", console=Console(file=io.StringIO()))
    setup_logging("WARNING", console=Console(file=io.StringIO()))
    root = logging.getLogger("zerotrust")
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING


class TestChatConsole:
    """Test chat input and command handling."""

    def test_plain_input_sends(self):
        session = FakeSession()
        chat = ChatConsole(session, "alice", "bob", make_console()[0])
        assert chat.handle_input("  hello bob  ") is True
        assert chat.handle_input("") is True
        assert session.sent == ["hello bob"]

    @pytest.mark.parametrize("command", ["/quit", "/exit", "/close", "/QUIT"])
    def test_quit_commands(self, command):
        chat = ChatConsole(FakeSession(), "alice", "bob", make_console()[0])
        assert chat.handle_input(command) is False

    def test_help(self):
        console, buffer = make_console()
        chat = ChatConsole(FakeSession(), "alice", "bob", console)
        assert chat.handle_command("/help") is True
        output = buffer.getvalue()
        for command in ("/help", "/quit", "/status", "/clear"):
            assert command in output

    def test_status(self):
        console, buffer = make_console()
        chat = ChatConsole(FakeSession(), "alice", "bob", console)
        chat.handle_command("/status")
        output = buffer.getvalue()
        assert "alice" in output and "bob" in output
        assert "ACTIVE" in output
        assert "AES-256-GCM" in output

    def test_clear_and_unknown(self):
        console, buffer = make_console()
        chat = ChatConsole(FakeSession(), "alice", "bob", console)
        assert chat.handle_command("/clear") is True
        assert chat.handle_command("/dance") is True
        assert "Unknown command" in buffer.getvalue()

    def test_send_error_reported(self):
        console, buffer = make_console()
        session = FakeSession()
        session.fail_sends = True
        ChatConsole(session, "alice", "bob", console).handle_input("hi")
        assert "Error sending message" in buffer.getvalue()

    def test_receive_loop_prints_and_detects_loss(self):
        console, buffer = make_console()
        chat = ChatConsole(FakeSession(incoming=["hi alice"]), "alice", "bob", console)
        chat.running.set()
        chat._receive_loop()
        output = buffer.getvalue()
        assert "bob: hi alice" in output
        assert "lost" in output
        assert not chat.running.is_set()

    def test_run_until_quit(self):
        session = FakeSession()
        session.receive = lambda timeout=None: None
        lines = iter(["first", "/status", "second", "/quit", "never sent"])
        chat = ChatConsole(session, "alice", "bob", make_console()[0], input_func=lambda prompt: next(lines))
        chat.run()
        assert session.sent == ["first", "second"]

    def test_run_until_eof(self):
        session = FakeSession()
        session.receive = lambda timeout=None: None

        def eof(prompt):
            raise EOFError

        ChatConsole(session, "alice", "bob", make_console()[0], input_func=eof).run()
        assert session.sent == []


class TestModes:
    """Test the echo modes through main()."""

    def test_no_mode(self, temp_dir, clean_env, reset_logging):
        assert main(["--config", str(temp_dir / "none.toml")]) == 1

    def test_bad_config(self, temp_dir, clean_env, reset_logging):
        path = temp_dir / "bad.toml"
        path.write_text("[network\n", encoding="utf-8")
        assert main(["--config", str(path), "server"]) == 1

    def test_client_mode(self, temp_dir, clean_env, reset_logging):
        server = EchoServer(0, LOCALHOST)
        port = server.bind()
        worker = threading.Thread(target=server.accept_one_connection, daemon=True)
        worker.start()
        try:
            code = main(
                ["--config", str(temp_dir / "none.toml"), "client", "--host", LOCALHOST, "--port", str(port)]
            )
        finally:
            server.close()
            worker.join(timeout=5)
        assert code == 0

    def test_client_mode_refused(self, temp_dir, clean_env, free_port, reset_logging):
        code = main(["--config", str(temp_dir / "none.toml"), "client", "--host", LOCALHOST, "--port", str(free_port)])
        assert code == 1

    def test_server_mode(self, temp_dir, clean_env, free_port, wait_for, reset_logging):
        clean_env.setenv("ZEROTRUST_ECHO_PORT", str(free_port))
        results = []
        worker = threading.Thread(
            target=lambda: results.append(main(["--config", str(temp_dir / "none.toml"), "server"])),
            daemon=True,
        )
        worker.start()

        replies = []

        def try_request():
            try:
                with EchoClient(LOCALHOST, free_port, timeout=1) as client:
                    replies.append(client.request("ping", timeout=5))
                return True
            except Exception:
                return False

        assert wait_for(try_request, timeout=10, interval=0.1)
        worker.join(timeout=5)
        assert replies == ["Echo: ping"]
        assert results == [0]

    def test_server_mode_transport_error(self, monkeypatch):
        """Test a connection that breaks mid-echo ends with a diagnostic."""

        def reset(self, on_line=None):
            raise TransportError("Read failed: connection reset by peer")

        monkeypatch.setattr(EchoServer, "accept_one_connection", reset)
        console, buffer = make_console()
        assert run_server(0, console) == 1
        assert "connection reset by peer" in buffer.getvalue()


def test_interactive_chat_end_to_end(temp_dir, clean_env, free_port, wait_for, reset_logging):
    """Test two interactive peers handshake, exchange a line and quit."""
    config = Config(temp_dir / "none.toml")
    config.set("network", "host", LOCALHOST)
    config.set("network", "ready_timeout", 10.0)
    config.set("network", "handshake_timeout", 10.0)

    alice_console, alice_out = make_console()
    bob_console, bob_out = make_console()
    results = {}

    def alice_input(prompt):
        assert wait_for(lambda: "hello from bob" in alice_out.getvalue(), timeout=10)
        return "/quit"

    bob_lines = iter(["hello from bob"])

    def bob_input(prompt):
        line = next(bob_lines, None)
        if line is not None:
            return line
        wait_for(lambda: "hello from bob" in alice_out.getvalue(), timeout=10)
        return "/quit"

    alice = threading.Thread(
        target=lambda: results.__setitem__(
            "alice",
            run_interactive(config, "Alice", free_port, "listen", LOCALHOST, 0, alice_console, alice_input),
        )
    )
    alice.start()
    assert wait_for(lambda: "Listening for incoming connections" in alice_out.getvalue(), timeout=10)

    results["bob"] = run_interactive(config, "Bob", 0, "connect", LOCALHOST, free_port, bob_console, bob_input)
    alice.join(timeout=15)

    assert results == {"alice": 0, "bob": 0}
    assert "Remote peer identified: Bob" in alice_out.getvalue()
    assert "Remote peer identified: Alice" in bob_out.getvalue()
    assert "Bob: hello from bob" in alice_out.getvalue()


def test_interactive_connect_refused(temp_dir, clean_env, free_port, reset_logging):
    config = Config(temp_dir / "none.toml")
    config.set("network", "ready_timeout", 2.0)
    console, buffer = make_console()
    code = run_interactive(config, "Bob", 0, "connect", LOCALHOST, free_port, console, lambda prompt: "/quit")
    assert code == 1
    assert "Error" in buffer.getvalue()


def test_interactive_silent_peer_after_identifier(temp_dir, clean_env, reset_logging):
    """Test a peer that never sends its public value ends the run with exit code 1."""
    config = Config(temp_dir / "none.toml")
    config.set("network", "handshake_timeout", 1.0)
    server_sock = listen_socket(0, LOCALHOST)
    port = server_sock.getsockname()[1]
    seen = []
    release = threading.Event()

    def mute_peer():
        transport = accept_one(server_sock)
        seen.append(transport.read_line(timeout=5))
        transport.write_line("PEER_ID:mute")
        release.wait(10)
        transport.close()

    worker = threading.Thread(target=mute_peer, daemon=True)
    worker.start()
    console, buffer = make_console()
    try:
        code = run_interactive(config, "Bob", 0, "connect", LOCALHOST, port, console, lambda prompt: "/quit")
    finally:
        release.set()
        worker.join(timeout=5)
        server_sock.close()

    assert code == 1
    assert seen == ["PEER_ID:Bob"]
    assert "Error" in buffer.getvalue()
