"""
Pytest configuration and fixtures for Zerotrust tests.

Provides temporary directories, free ports, and connected or keyed
session pairs over loopback.
"""

import shutil
import socket
import tempfile
import time
from pathlib import Path
from typing import Callable, Generator, Tuple

import pytest

from zerotrust.constants import LOCALHOST
from zerotrust.session import PeerSession

HANDSHAKE_TEST_TIMEOUT = 10


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Create a temporary directory for test data.

    Yields:
        Path: Temporary directory path
    """
    tmp = Path(tempfile.mkdtemp(prefix="zerotrust_test_"))
    try:
        yield tmp
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


@pytest.fixture
def free_port() -> int:
    """Return a loopback port that was free a moment ago."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((LOCALHOST, 0))
        return sock.getsockname()[1]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove any ZEROTRUST_* variables inherited from the environment."""
    import os

    for name in list(os.environ):
        if name.startswith("ZEROTRUST_"):
            monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def wait_for() -> Callable[..., bool]:
    """Poll a predicate until it holds or the timeout expires."""

    def _wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.02) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait_for


def make_session(name: str, **kwargs) -> PeerSession:
    kwargs.setdefault("host", LOCALHOST)
    kwargs.setdefault("handshake_timeout", HANDSHAKE_TEST_TIMEOUT)
    kwargs.setdefault("connect_timeout", 5)
    return PeerSession(name, 0, **kwargs)


@pytest.fixture
def session_pair() -> Generator[Tuple[PeerSession, PeerSession], None, None]:
    """
    A listener and a connector with an established transport.

    Yields:
        (listener, connector), both CONNECTED
    """
    listener = make_session("alice")
    connector = make_session("bob")
    try:
        listener.listen()
        connector.connect(LOCALHOST, listener.local_port)
        assert connector.wait_until_ready(5)
        assert listener.wait_until_ready(5)
        yield listener, connector
    finally:
        connector.close()
        listener.close()


@pytest.fixture
def keyed_pair(session_pair) -> Tuple[PeerSession, PeerSession]:
    """
    A session pair that has completed identifier and key exchange.

    Returns:
        (listener, connector), both ACTIVE
    """
    listener, connector = session_pair
    ids = [listener.exchange_ids_async(), connector.exchange_ids_async()]
    for future in ids:
        future.result(timeout=HANDSHAKE_TEST_TIMEOUT)

    keys = [listener.perform_key_exchange(), connector.perform_key_exchange()]
    for future in keys:
        assert future.result(timeout=HANDSHAKE_TEST_TIMEOUT) is True
    return listener, connector


def pytest_configure(config):
    """
    Configure pytest markers.

    Args:
        config: Pytest configuration object
    """
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line("markers", "integration: mark test as an integration test")
    config.addinivalue_line("markers", "slow: mark test as slow running")


def pytest_collection_modifyitems(config, items):
    """Add markers based on test location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
