"""
Zerotrust - Encrypted Two-Party Peer Messaging

A peer session library: one side listens, the other connects, both swap
identifiers and ephemeral Diffie-Hellman public values, derive a shared
AES-256-GCM key, and exchange encrypted text lines over a single TCP
connection.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .cipher import decrypt, derive_key, encrypt, generate_key
from .config import Config
from .constants import APP_NAME, VERSION
from .errors import (
    ConfigError,
    ConnectionFailedError,
    CryptoError,
    DecryptionError,
    EncryptionError,
    ErrorCode,
    HandshakeError,
    IntegrityError,
    InvalidPeerKeyError,
    KeyGenerationError,
    NetworkError,
    ProtocolError,
    SessionStateError,
    TransportError,
    ZeroTrustError,
)
from .key_exchange import KeyExchange, KeyExchangeGroup
from .session import PeerSession, SessionEvents
from .session_fsm import SessionState

__all__ = [
    "APP_NAME",
    "VERSION",
    "Config",
    "ConfigError",
    "ConnectionFailedError",
    "CryptoError",
    "DecryptionError",
    "EncryptionError",
    "ErrorCode",
    "HandshakeError",
    "IntegrityError",
    "InvalidPeerKeyError",
    "KeyExchange",
    "KeyExchangeGroup",
    "KeyGenerationError",
    "NetworkError",
    "PeerSession",
    "ProtocolError",
    "SessionEvents",
    "SessionState",
    "SessionStateError",
    "TransportError",
    "ZeroTrustError",
    "__license__",
    "__version__",
    "decrypt",
    "derive_key",
    "encrypt",
    "generate_key",
]
