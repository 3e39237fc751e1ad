"""Utility functions for flydrive."""

from flydrive.utils.crypto import generate_signing_key, sign, verify
from flydrive.utils.validation import normalize_path, normalize_prefix, validate_identifier

__all__ = [
    "generate_signing_key",
    "normalize_path",
    "normalize_prefix",
    "sign",
    "validate_identifier",
    "verify",
]
