"""
Zerotrust - Ephemeral Diffie-Hellman key exchange.

Each KeyExchange instance owns exactly one ephemeral key pair, generated at
construction and discarded with the session that created it. Two groups are
supported, both fixed in advance so peers never negotiate parameters:

- X25519: Elliptic Curve Diffie-Hellman (default, 128-bit security level)
- MODP_2048: finite-field Diffie-Hellman over the RFC 3526 group 14 prime

Public values travel as base64 text of the DER SubjectPublicKeyInfo
encoding, which is self-describing: the receiving side can tell the key
type and, for finite-field DH, the group parameters.

The exchange is unauthenticated. Nothing binds a public value to the peer
that sent it, so an active on-path attacker can substitute its own values
and sit in the middle of the session undetected.
"""

import base64
import binascii
import functools
import logging
from enum import Enum

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dh, x25519

from .constants import DH_GENERATOR, MODP_2048_PRIME
from .errors import InvalidPeerKeyError, KeyGenerationError

logger = logging.getLogger(__name__)


class KeyExchangeGroup(Enum):
    """Key agreement groups a session may use. Both peers must pick the same one."""

    X25519 = "x25519"
    MODP_2048 = "modp2048"

    @classmethod
    def from_name(cls, name: str) -> "KeyExchangeGroup":
        """Look up a group by its configuration name (case-insensitive)."""
        normalized = str(name).strip().lower().replace("-", "").replace("_", "")
        for group in cls:
            if group.value == normalized:
                return group
        raise ValueError(f"Unknown key exchange group: {name}")


@functools.lru_cache(maxsize=None)
def _modp_2048_parameters() -> "dh.DHParameters":
    """RFC 3526 group 14 parameters, built on first use."""
    return dh.DHParameterNumbers(MODP_2048_PRIME, DH_GENERATOR).parameters()


class KeyExchange:
    """
    One ephemeral key pair plus the key-agreement computation.

    The instance holds no other state: computing a shared secret is pure
    and returns the same bytes for the same peer value.
    """

    def __init__(self, group: KeyExchangeGroup = KeyExchangeGroup.X25519):
        self.group = group
        try:
            if group is KeyExchangeGroup.X25519:
                self._private_key = x25519.X25519PrivateKey.generate()
            elif group is KeyExchangeGroup.MODP_2048:
                parameters = _modp_2048_parameters()
                self._private_key = parameters.generate_private_key()
            else:
                raise KeyGenerationError(f"Unsupported key exchange group: {group!r}")
        except (UnsupportedAlgorithm, ValueError) as e:
            raise KeyGenerationError(
                f"Failed to generate {group.value} key pair: {e}",
                {"group": group.value},
            ) from e

        self._public_key = self._private_key.public_key()
        logger.debug(f"Generated ephemeral {group.value} key pair")

    def public_value(self) -> str:
        """Return this instance's public value as base64 DER SubjectPublicKeyInfo."""
        der = self._public_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return base64.b64encode(der).decode("ascii")

    def compute_shared_secret(self, peer_public_value: str) -> bytes:
        """
        Compute the raw shared secret with a peer's encoded public value.

        Args:
            peer_public_value: Base64 DER public value received from the peer

        Returns:
            Raw shared-secret bytes (feed through cipher.derive_key)

        Raises:
            InvalidPeerKeyError: If the value cannot be decoded, is of the
                wrong key type or group, or is rejected by the primitive
        """
        peer_key = self._load_peer_key(peer_public_value)
        try:
            return self._private_key.exchange(peer_key)
        except ValueError as e:
            raise InvalidPeerKeyError(f"Key agreement rejected peer value: {e}") from e

    def _load_peer_key(self, peer_public_value: str):
        if not isinstance(peer_public_value, str) or not peer_public_value.strip():
            raise InvalidPeerKeyError("Peer public value is empty")

        try:
            der = base64.b64decode(peer_public_value.strip(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise InvalidPeerKeyError(f"Peer public value is not valid base64: {e}") from e

        try:
            peer_key = serialization.load_der_public_key(der)
        except (ValueError, UnsupportedAlgorithm) as e:
            raise InvalidPeerKeyError(f"Peer public value is not a valid public key: {e}") from e

        if self.group is KeyExchangeGroup.X25519:
            if not isinstance(peer_key, x25519.X25519PublicKey):
                raise InvalidPeerKeyError(
                    "Peer public value is not an X25519 key",
                    {"expected": self.group.value, "received": type(peer_key).__name__},
                )
            return peer_key

        if not isinstance(peer_key, dh.DHPublicKey):
            raise InvalidPeerKeyError(
                "Peer public value is not a Diffie-Hellman key",
                {"expected": self.group.value, "received": type(peer_key).__name__},
            )

        numbers = peer_key.public_numbers()
        group_numbers = numbers.parameter_numbers
        if group_numbers.p != MODP_2048_PRIME or group_numbers.g != DH_GENERATOR:
            raise InvalidPeerKeyError(
                "Peer public value uses different Diffie-Hellman parameters",
                {"expected": self.group.value},
            )
        if not 1 < numbers.y < MODP_2048_PRIME - 1:
            raise InvalidPeerKeyError("Peer public value is outside the valid range")
        return peer_key
