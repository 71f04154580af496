"""
Zerotrust - Custom Exception Classes and Error Codes

This module defines all custom exceptions and error codes used throughout
the Zerotrust package. Each error has a unique code for logging and debugging.

Version: 1.0.0
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Enumeration of all Zerotrust error codes."""

    # General Errors (E001-E099)
    E001_UNKNOWN_ERROR = "E001"
    E002_INVALID_ARGUMENT = "E002"

    # Crypto Errors (E100-E199)
    E100_CRYPTO_ERROR = "E100"
    E101_ENCRYPTION_FAILED = "E101"
    E102_DECRYPTION_FAILED = "E102"
    E103_INVALID_KEY = "E103"
    E104_KEY_GENERATION_FAILED = "E104"
    E105_INVALID_PEER_KEY = "E105"
    E106_INTEGRITY_CHECK_FAILED = "E106"

    # Network Errors (E200-E299)
    E200_NETWORK_ERROR = "E200"
    E201_CONNECTION_FAILED = "E201"
    E202_CONNECTION_TIMEOUT = "E202"
    E203_CONNECTION_CLOSED = "E203"
    E204_SEND_FAILED = "E204"
    E205_RECEIVE_FAILED = "E205"
    E206_INVALID_MESSAGE = "E206"
    E207_MESSAGE_TOO_LARGE = "E207"
    E209_HANDSHAKE_FAILED = "E209"
    E210_PROTOCOL_VIOLATION = "E210"
    E211_INVALID_SESSION_STATE = "E211"

    # Config Errors (E700-E799)
    E700_CONFIG_ERROR = "E700"
    E701_CONFIG_LOAD_FAILED = "E701"
    E702_CONFIG_SAVE_FAILED = "E702"
    E703_INVALID_CONFIG = "E703"
    E704_CONFIG_PARSE_ERROR = "E704"


class ZeroTrustError(Exception):
    """Base exception class for all Zerotrust errors.

    All custom exceptions in Zerotrust inherit from this class.
    Provides standardized error handling and logging.

    Attributes:
        code: Error code from ErrorCode enum
        message: Human-readable error message
        details: Additional error details (optional)
    """

    def __init__(self, code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None):
        """Initialize a Zerotrust error.

        Args:
            code: Error code from ErrorCode enum
            message: Human-readable error message
            details: Additional error context (optional)
        """
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary for serialization.

        Returns:
            Dictionary containing error information
        """
        return {"code": self.code.value, "message": self.message, "details": self.details}


class CryptoError(ZeroTrustError):
    """Exception raised for cryptographic operation failures.

    This includes key generation, key agreement, encryption and decryption.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E100_CRYPTO_ERROR,
        message: str = "Cryptographic operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class KeyGenerationError(CryptoError):
    """Raised when an ephemeral key pair cannot be generated."""

    def __init__(
        self,
        message: str = "Key pair generation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E104_KEY_GENERATION_FAILED, message, details)


class InvalidPeerKeyError(CryptoError):
    """Raised when a peer's public value cannot be decoded or used."""

    def __init__(
        self,
        message: str = "Invalid peer public value",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E105_INVALID_PEER_KEY, message, details)


class EncryptionError(CryptoError):
    """Raised when a plaintext cannot be encrypted."""

    def __init__(
        self,
        message: str = "Encryption failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E101_ENCRYPTION_FAILED, message, details)


class DecryptionError(CryptoError):
    """Raised when ciphertext text is malformed or cannot be decrypted."""

    def __init__(
        self,
        message: str = "Decryption failed",
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.E102_DECRYPTION_FAILED,
    ):
        super().__init__(code, message, details)


class IntegrityError(DecryptionError):
    """Raised when authenticated decryption rejects the ciphertext.

    Covers both a wrong key and tampered data; the two are
    indistinguishable to an AEAD cipher.
    """

    def __init__(
        self,
        message: str = "Ciphertext failed authentication",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details, code=ErrorCode.E106_INTEGRITY_CHECK_FAILED)


class NetworkError(ZeroTrustError):
    """Exception raised for network operation failures.

    This includes connection errors, timeouts, send/receive failures,
    and protocol violations.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E200_NETWORK_ERROR,
        message: str = "Network operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)


class ConnectionFailedError(NetworkError):
    """Raised when a listener cannot bind or a dial is refused, unreachable or times out."""

    def __init__(
        self,
        message: str = "Connection failed",
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.E201_CONNECTION_FAILED,
    ):
        super().__init__(code, message, details)


class TransportError(NetworkError):
    """Raised when an established transport breaks mid-session."""

    def __init__(
        self,
        message: str = "Transport failure",
        details: Optional[Dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.E203_CONNECTION_CLOSED,
    ):
        super().__init__(code, message, details)


class ProtocolError(NetworkError):
    """Raised for a malformed or missing identifier-exchange line."""

    def __init__(
        self,
        message: str = "Protocol violation",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E210_PROTOCOL_VIOLATION, message, details)


class HandshakeError(NetworkError):
    """Raised for a malformed or missing key-exchange line."""

    def __init__(
        self,
        message: str = "Key exchange handshake failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E209_HANDSHAKE_FAILED, message, details)


class SessionStateError(NetworkError):
    """Raised when an operation is attempted in a state that does not allow it."""

    def __init__(
        self,
        message: str = "Operation not allowed in current session state",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(ErrorCode.E211_INVALID_SESSION_STATE, message, details)


class ConfigError(ZeroTrustError):
    """Exception raised for configuration failures.

    This includes loading, parsing, and validating configuration files.
    """

    def __init__(
        self,
        code: ErrorCode = ErrorCode.E700_CONFIG_ERROR,
        message: str = "Configuration operation failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(code, message, details)
