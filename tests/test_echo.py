"""
Zerotrust - Echo server and client tests.
"""

import threading

import pytest

from zerotrust.constants import LOCALHOST
from zerotrust.echo import EchoClient, EchoServer
from zerotrust.errors import ConnectionFailedError


@pytest.fixture
def echo_server():
    server = EchoServer(0, LOCALHOST)
    server.bind()
    results = []
    received = []
    worker = threading.Thread(
        target=lambda: results.append(server.accept_one_connection(on_line=received.append)),
        daemon=True,
    )
    worker.start()
    try:
        yield server, worker, results, received
    finally:
        server.close()
        worker.join(timeout=5)


def test_echo_round_trip(echo_server):
    server, worker, results, received = echo_server
    with EchoClient(LOCALHOST, server.port, timeout=5) as client:
        assert client.request("Hello, Server!", timeout=5) == "Echo: Hello, Server!"
        client.send("second")
        assert client.receive_one_line(timeout=5) == "Echo: second"

    worker.join(timeout=5)
    assert results == [2]
    assert received == ["Hello, Server!", "second"]


def test_echo_preserves_order(echo_server):
    server, worker, results, _ = echo_server
    with EchoClient(LOCALHOST, server.port, timeout=5) as client:
        for i in range(10):
            client.send(f"line {i}")
        replies = [client.receive_one_line(timeout=5) for _ in range(10)]
    assert replies == [f"Echo: line {i}" for i in range(10)]


def test_request_after_server_closed(echo_server):
    server, _, _, _ = echo_server
    with EchoClient(LOCALHOST, server.port, timeout=5) as client:
        assert client.request("one", timeout=5) == "Echo: one"
        server.close()
        with pytest.raises(ConnectionFailedError):
            client.request("two", timeout=5)


def test_client_connection_refused(free_port):
    with pytest.raises(ConnectionFailedError):
        EchoClient(LOCALHOST, free_port, timeout=2)


def test_close_abandons_accept():
    server = EchoServer(0, LOCALHOST)
    server.bind()
    results = []
    worker = threading.Thread(target=lambda: results.append(server.accept_one_connection()))
    worker.start()
    server.close()
    worker.join(timeout=5)
    assert results == [0]
