"""
Ed25519 signature engine.

Signing is deterministic (RFC 8032); no randomness is involved beyond
the scheme's own. Key material uses the NaCl layout:

- public key: 32 raw bytes
- secret key: 64 bytes, the 32-byte seed followed by the public key
- signature:  64 raw bytes

Error policy:
- Wrong byte lengths are caller bugs and raise InputError.
- Right-length but malformed keys or signatures are NOT errors: verify()
  returns False.
"""

from __future__ import annotations

import binascii

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from otssign.app.crypto.constants import (
    PUBLIC_KEY_LENGTH,
    PUBLIC_KEY_PREFIX,
    SECRET_KEY_LENGTH,
    SEED_LENGTH,
    SIGNATURE_LENGTH,
)
from otssign.app.errors import InputError


# ------------------------------------------------------------------
# Hex encoding
# ------------------------------------------------------------------


def bytes_to_hex(data: bytes) -> str:
    """Lower-case hex, two characters per byte."""
    return bytes(data).hex()


def hex_to_bytes(text: str) -> bytes:
    """Strict hex decoding (even length, hex digits only)."""
    if not isinstance(text, str):
        raise InputError(f"Expected hex string, got {type(text).__name__}")

    if len(text) % 2:
        raise InputError("Hex string has odd length")

    try:
        return binascii.unhexlify(text)
    except (binascii.Error, ValueError) as exc:
        raise InputError(f"Invalid hex string: {exc}") from exc


# ------------------------------------------------------------------
# Public key formatting
# ------------------------------------------------------------------


def format_public_key(public_key: bytes) -> str:
    """Human-displayable form: ``ed25519:<64 hex chars>``."""
    _require_length(public_key, PUBLIC_KEY_LENGTH, "public key")
    return PUBLIC_KEY_PREFIX + bytes_to_hex(public_key)


def parse_public_key(formatted: str) -> bytes:
    """Inverse of format_public_key. Rejects any other prefix."""
    if not isinstance(formatted, str) or not formatted.startswith(PUBLIC_KEY_PREFIX):
        raise InputError("Invalid public key format")

    raw = hex_to_bytes(formatted[len(PUBLIC_KEY_PREFIX):])
    _require_length(raw, PUBLIC_KEY_LENGTH, "public key")
    return raw


# ------------------------------------------------------------------
# Sign / verify
# ------------------------------------------------------------------


def sign(message: bytes, secret_key: bytes) -> bytes:
    """Produce a detached 64-byte signature over exactly ``message``."""
    _require_length(secret_key, SECRET_KEY_LENGTH, "secret key")

    private_key = Ed25519PrivateKey.from_private_bytes(
        bytes(secret_key[:SEED_LENGTH])
    )
    return private_key.sign(bytes(message))


def verify(message: bytes, signature: bytes, public_key: bytes) -> bool:
    """
    True iff ``signature`` was made over exactly ``message`` by the holder
    of ``public_key``.
    """
    _require_length(signature, SIGNATURE_LENGTH, "signature")
    _require_length(public_key, PUBLIC_KEY_LENGTH, "public key")

    try:
        key = Ed25519PublicKey.from_public_bytes(bytes(public_key))
        key.verify(bytes(signature), bytes(message))
    except (InvalidSignature, ValueError):
        return False

    return True


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _require_length(data: bytes, expected: int, label: str) -> None:
    if not isinstance(data, (bytes, bytearray)):
        raise InputError(
            f"{label} must be bytes, got {type(data).__name__}"
        )
    if len(data) != expected:
        raise InputError(
            f"{label} must be {expected} bytes, got {len(data)}"
        )
