"""Cryptographic utilities for locally signed URLs."""

import secrets

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac


def generate_signing_key(length: int = 32) -> str:
    """Generate a random key suitable for signing local URLs.

    Args:
        length: Number of bytes (output will be URL-safe base64, ~4/3 longer)

    Returns:
        URL-safe base64-encoded random string
    """
    return secrets.token_urlsafe(length)


def _mac(key: bytes, message: str) -> hmac.HMAC:
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(message.encode("utf-8"))
    return mac


def sign(key: bytes, message: str) -> str:
    """Compute the hex HMAC-SHA256 signature of a message."""
    return _mac(key, message).finalize().hex()


def verify(key: bytes, message: str, signature: str) -> bool:
    """Check a hex signature in constant time."""
    try:
        expected = bytes.fromhex(signature)
    except ValueError:
        return False
    try:
        _mac(key, message).verify(expected)
    except InvalidSignature:
        return False
    return True
