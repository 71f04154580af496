"""
Zerotrust - Symmetric key derivation and authenticated encryption.

This module implements the session cipher:
- SHA-256 key derivation from arbitrary-length secret material
- AES-256-GCM authenticated encryption with a fresh 96-bit nonce per message
- Base64 text encoding so ciphertext travels as a single protocol line

Wire format of one encrypted unit:

    base64( nonce[12] || ciphertext || tag[16] )

AES-GCM replaces plain block-mode AES (no IV, no tag), which leaked
repeated plaintext blocks and could not detect tampering. Key derivation
is unchanged: both peers hash the Diffie-Hellman secret with SHA-256 and
use the 32-byte digest as the AES-256 key.

All cryptographic operations use the cryptography library (Apache 2.0/BSD License).
"""

import base64
import binascii
import os
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .constants import KEY_SIZE, LINE_ENCODING, NONCE_SIZE, TAG_SIZE
from .errors import DecryptionError, EncryptionError, IntegrityError


def derive_key(secret_material: bytes) -> bytes:
    """
    Derive a 256-bit symmetric key from arbitrary-length secret material.

    SHA-256 always produces 32 bytes, so the output is a valid AES-256 key
    regardless of input length. Deterministic: two peers holding the same
    shared secret arrive at the same key.
    """
    digest = hashes.Hash(hashes.SHA256())
    digest.update(bytes(secret_material))
    return digest.finalize()


def generate_key() -> bytes:
    """Generate a random 256-bit key, independent of any handshake."""
    return secrets.token_bytes(KEY_SIZE)


def _check_key(key) -> None:
    if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_SIZE:
        raise ValueError(f"key must be {KEY_SIZE} bytes")


def encrypt(plaintext: str, key: bytes) -> str:
    """
    Encrypt a string with AES-256-GCM and return base64 text.

    A unique random nonce is generated for every call, so encrypting the
    same plaintext twice yields different ciphertexts.

    Raises:
        EncryptionError: If plaintext is not a string or the key is invalid
    """
    if not isinstance(plaintext, str):
        raise EncryptionError(
            "Plaintext must be a string",
            {"type": type(plaintext).__name__},
        )
    try:
        _check_key(key)
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(bytes(key)).encrypt(nonce, plaintext.encode(LINE_ENCODING), None)
    except (ValueError, TypeError) as e:
        raise EncryptionError(f"Encryption failed: {e}") from e

    return base64.b64encode(nonce + ciphertext).decode("ascii")


def encrypted_length(plaintext: str) -> int:
    """Length of the base64 text :func:`encrypt` produces for plaintext."""
    raw_length = NONCE_SIZE + len(plaintext.encode(LINE_ENCODING)) + TAG_SIZE
    return 4 * ((raw_length + 2) // 3)


def decrypt(ciphertext_text: str, key: bytes) -> str:
    """
    Decrypt base64 text produced by :func:`encrypt`.

    Raises:
        DecryptionError: If the text is not valid base64, is too short,
            or the key is invalid
        IntegrityError: If the authentication tag does not verify (wrong
            key or tampered data) or the plaintext is not valid UTF-8
    """
    if not isinstance(ciphertext_text, str):
        raise DecryptionError(
            "Ciphertext must be a string",
            {"type": type(ciphertext_text).__name__},
        )

    try:
        raw = base64.b64decode(ciphertext_text.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise DecryptionError(f"Ciphertext is not valid base64: {e}") from e

    if len(raw) < NONCE_SIZE + TAG_SIZE:
        raise DecryptionError(
            "Ciphertext too short",
            {"length": len(raw), "minimum": NONCE_SIZE + TAG_SIZE},
        )

    try:
        _check_key(key)
        aesgcm = AESGCM(bytes(key))
    except (ValueError, TypeError) as e:
        raise DecryptionError(f"Invalid key: {e}") from e

    nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plaintext_bytes = aesgcm.decrypt(nonce, ciphertext, None)
    except InvalidTag as e:
        raise IntegrityError("Authentication tag mismatch (wrong key or tampered data)") from e

    try:
        return plaintext_bytes.decode(LINE_ENCODING)
    except UnicodeDecodeError as e:
        raise IntegrityError("Decrypted payload is not valid UTF-8") from e
