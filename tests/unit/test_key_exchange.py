"""
Unit tests for zerotrust.key_exchange module.

Tests ephemeral key agreement for both supported groups.
"""

import base64
import subprocess
import sys

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ec

from zerotrust.cipher import derive_key
from zerotrust.errors import InvalidPeerKeyError
from zerotrust.key_exchange import KeyExchange, KeyExchangeGroup, _modp_2048_parameters


def test_x25519_agreement_repeated():
    """Test two fresh instances agree on the secret, many times over."""
    for _ in range(25):
        alice = KeyExchange()
        bob = KeyExchange()
        alice_secret = alice.compute_shared_secret(bob.public_value())
        bob_secret = bob.compute_shared_secret(alice.public_value())
        assert alice_secret == bob_secret
        assert derive_key(alice_secret) == derive_key(bob_secret)


def test_modp2048_agreement():
    """Test finite-field agreement over the 2048-bit group."""
    for _ in range(3):
        alice = KeyExchange(KeyExchangeGroup.MODP_2048)
        bob = KeyExchange(KeyExchangeGroup.MODP_2048)
        assert alice.compute_shared_secret(bob.public_value()) == bob.compute_shared_secret(
            alice.public_value()
        )


def test_third_party_secret_differs():
    """Test a third key pair does not arrive at the same secret."""
    alice = KeyExchange()
    bob = KeyExchange()
    eve = KeyExchange()
    shared = alice.compute_shared_secret(bob.public_value())
    assert eve.compute_shared_secret(bob.public_value()) != shared
    assert alice.compute_shared_secret(eve.public_value()) != shared


def test_public_value_is_stable_base64_der():
    """Test public values are repeatable base64 DER SubjectPublicKeyInfo."""
    exchange = KeyExchange()
    value = exchange.public_value()
    assert value == exchange.public_value()
    assert "\n" not in value

    der = base64.b64decode(value, validate=True)
    assert serialization.load_der_public_key(der) is not None


def test_fresh_key_pair_per_instance():
    assert KeyExchange().public_value() != KeyExchange().public_value()


def test_compute_is_idempotent():
    alice = KeyExchange()
    bob_value = KeyExchange().public_value()
    assert alice.compute_shared_secret(bob_value) == alice.compute_shared_secret(bob_value)


def test_x25519_leaves_finite_field_group_unbuilt():
    """Test the default group never touches the deprecated FFDH parameters."""
    _modp_2048_parameters.cache_clear()
    alice = KeyExchange()
    alice.compute_shared_secret(KeyExchange().public_value())
    assert _modp_2048_parameters.cache_info().currsize == 0


def test_import_emits_no_deprecation_warning():
    """Test importing the package is silent under the default group."""
    code = (
        "import warnings\n"
        "from cryptography.utils import CryptographyDeprecationWarning\n"
        "warnings.simplefilter('error', CryptographyDeprecationWarning)\n"
        "import zerotrust.key_exchange\n"
    )
    result = subprocess.run([sys.executable, "-c", code], capture_output=True, text=True, timeout=60)
    assert result.returncode == 0, result.stderr


class TestInvalidPeerValues:
    """Test rejection of malformed or mismatched peer values."""

    @pytest.mark.parametrize("value", ["", "   ", "%%%not base64%%%", "aGVsbG8gd29ybGQ="])
    def test_malformed(self, value):
        with pytest.raises(InvalidPeerKeyError):
            KeyExchange().compute_shared_secret(value)

    def test_none(self):
        with pytest.raises(InvalidPeerKeyError):
            KeyExchange().compute_shared_secret(None)

    def test_group_mismatch(self):
        """Test an X25519 instance refuses a MODP value and vice versa."""
        x25519_side = KeyExchange(KeyExchangeGroup.X25519)
        modp_side = KeyExchange(KeyExchangeGroup.MODP_2048)

        with pytest.raises(InvalidPeerKeyError):
            x25519_side.compute_shared_secret(modp_side.public_value())
        with pytest.raises(InvalidPeerKeyError):
            modp_side.compute_shared_secret(x25519_side.public_value())

    def test_wrong_key_type(self):
        """Test a valid public key of another algorithm is refused."""
        ec_key = ec.generate_private_key(ec.SECP256R1()).public_key()
        der = ec_key.public_bytes(
            encoding=serialization.Encoding.DER,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        with pytest.raises(InvalidPeerKeyError):
            KeyExchange().compute_shared_secret(base64.b64encode(der).decode("ascii"))


class TestGroupNames:
    """Test configuration names for groups."""

    @pytest.mark.parametrize(
        "name,expected",
        [
            ("x25519", KeyExchangeGroup.X25519),
            ("X25519", KeyExchangeGroup.X25519),
            ("modp2048", KeyExchangeGroup.MODP_2048),
            ("MODP_2048", KeyExchangeGroup.MODP_2048),
            ("modp-2048", KeyExchangeGroup.MODP_2048),
        ],
    )
    def test_from_name(self, name, expected):
        assert KeyExchangeGroup.from_name(name) is expected

    def test_unknown_name(self):
        with pytest.raises(ValueError):
            KeyExchangeGroup.from_name("rsa")
