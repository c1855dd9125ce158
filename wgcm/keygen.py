"""
WireGuard Key Operations

Public keys are DERIVED from private keys (not stored separately).
Every caller that needs a public key recomputes it from the stored
private key, so the two can never drift apart.
"""

import base64
import binascii
import secrets
from typing import Tuple

from nacl.public import PrivateKey

from wgcm.errors import InvalidKey

KEY_LENGTH = 32
ENCODED_KEY_LENGTH = 44


def encode_key(raw: bytes) -> str:
    """Base64-encode 32 raw key bytes (standard alphabet, 44 chars)"""
    if len(raw) != KEY_LENGTH:
        raise InvalidKey(f"key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return base64.b64encode(raw).decode('ascii')


def decode_key(key_base64: str) -> bytes:
    """
    Decode a base64 key and check it is exactly 32 bytes.

    Raises:
        InvalidKey: not standard base64, or wrong length once decoded
    """
    key_base64 = key_base64.strip()

    try:
        raw = base64.b64decode(key_base64, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidKey("key is not valid base64")

    if len(raw) != KEY_LENGTH:
        raise InvalidKey(f"key must decode to {KEY_LENGTH} bytes, got {len(raw)}")

    return raw


def verify_private_key(key_base64: str) -> str:
    """Validate a user-supplied private key; returns it normalized"""
    return encode_key(decode_key(key_base64))


def verify_preshared_key(key_base64: str) -> str:
    """Validate a user-supplied preshared key; returns it normalized"""
    return encode_key(decode_key(key_base64))


def public_from_private(private_bytes: bytes) -> bytes:
    """
    X25519 base-point multiplication.

    Any 32-byte string is a valid scalar once clamped, so this only
    fails on a wrong length.
    """
    if len(private_bytes) != KEY_LENGTH:
        raise InvalidKey(f"private key must be {KEY_LENGTH} bytes")
    return bytes(PrivateKey(private_bytes).public_key)


def derive_public_key(private_key_base64: str) -> str:
    """
    Derive WireGuard public key from private key.

    Uses PyNaCl for derivation (same curve25519 as WireGuard).

    Args:
        private_key_base64: Base64-encoded private key

    Returns:
        Base64-encoded public key
    """
    return encode_key(public_from_private(decode_key(private_key_base64)))


def generate_keypair() -> Tuple[str, str]:
    """
    Generate a WireGuard keypair.

    Returns:
        (private_key_base64, public_key_base64)
    """
    private = PrivateKey.generate()
    return encode_key(bytes(private)), encode_key(bytes(private.public_key))


def generate_preshared_key() -> str:
    """
    Generate a WireGuard preshared key.

    Returns:
        Base64-encoded preshared key
    """
    return encode_key(secrets.token_bytes(KEY_LENGTH))
