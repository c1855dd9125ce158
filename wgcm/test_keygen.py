"""
Tests for key generation, derivation and validation
"""

import base64

import pytest

from wgcm.errors import InvalidKey
from wgcm.keygen import (
    ENCODED_KEY_LENGTH,
    decode_key,
    derive_public_key,
    encode_key,
    generate_keypair,
    generate_preshared_key,
    public_from_private,
    verify_preshared_key,
    verify_private_key,
)

# RFC 7748 section 6.1, Alice's keypair
ALICE_PRIVATE = "dwdtCnMYpX08FsFyUbJmRd9ML4frwJkqsXf7pR25LCo="
ALICE_PUBLIC = "hSDwCYkwp1R0i33ctD73Wg2/Og0mOBr066SpjqqbTmo="


class TestKeypair:
    """Generation and derivation"""

    def test_generated_keys_are_44_chars(self):
        """Both halves of a generated keypair encode to 44 characters"""
        private, public = generate_keypair()

        assert len(private) == ENCODED_KEY_LENGTH
        assert len(public) == ENCODED_KEY_LENGTH

    def test_derived_public_matches_generated(self):
        """Deriving from the private key gives back the generated public key"""
        private, public = generate_keypair()

        assert derive_public_key(private) == public

    def test_generated_keys_differ(self):
        private1, _ = generate_keypair()
        private2, _ = generate_keypair()

        assert private1 != private2

    def test_known_vector(self):
        """X25519 base-point multiplication matches RFC 7748"""
        assert derive_public_key(ALICE_PRIVATE) == ALICE_PUBLIC

    def test_public_from_private_bytes(self):
        raw = base64.b64decode(ALICE_PRIVATE)

        assert base64.b64encode(public_from_private(raw)).decode() == ALICE_PUBLIC

    def test_public_from_private_wrong_length(self):
        with pytest.raises(InvalidKey):
            public_from_private(b'\x01' * 31)


class TestEncoding:
    """Base64 handling"""

    def test_round_trip(self):
        raw = bytes(range(32))

        assert decode_key(encode_key(raw)) == raw

    def test_encode_wrong_length(self):
        with pytest.raises(InvalidKey):
            encode_key(b'\x00' * 16)

    def test_decode_rejects_garbage(self):
        """Characters outside the standard alphabet are rejected"""
        with pytest.raises(InvalidKey, match="base64"):
            decode_key("not*a*key" * 5)

    def test_decode_rejects_short_key(self):
        """31 bytes of valid base64 is still the wrong length"""
        with pytest.raises(InvalidKey, match="32 bytes"):
            decode_key(base64.b64encode(b'\x00' * 31).decode())

    def test_decode_strips_whitespace(self):
        assert decode_key(f"  {ALICE_PRIVATE}\n") == base64.b64decode(ALICE_PRIVATE)


class TestVerification:
    """User-supplied keys"""

    def test_verify_private_key(self):
        assert verify_private_key(ALICE_PRIVATE) == ALICE_PRIVATE

    def test_verify_private_key_invalid(self):
        with pytest.raises(InvalidKey):
            verify_private_key("short")

    def test_generated_psk_verifies(self):
        psk = generate_preshared_key()

        assert len(psk) == ENCODED_KEY_LENGTH
        assert verify_preshared_key(psk) == psk

    def test_verify_preshared_key_invalid(self):
        with pytest.raises(InvalidKey):
            verify_preshared_key(base64.b64encode(b'\x00' * 33).decode())
