"""
Canonical signing message codec.

The signing message is the exact byte sequence that is signed and later
verified. It binds a signature to a document hash, a signer, and a time:

    {"documentHash":"<hex>","email":"<normalized>","timestamp":"<iso>","version":"ots-sign-v1"}

Field order, hex case, and the absence of whitespace are part of the
wire contract. The message itself is never persisted; only its signature
is.
"""

from __future__ import annotations

from otssign.app.crypto.constants import DIGEST_LENGTH, PROTOCOL_VERSION
from otssign.app.crypto.identity import normalize_email
from otssign.app.crypto.signatures import bytes_to_hex
from otssign.app.errors import InputError
from otssign.app.utils.hashing import canonical_json


def encode_signing_message(
    document_hash: bytes,
    email: str,
    timestamp: str,
) -> bytes:
    """Encode the canonical signing message as UTF-8 bytes."""
    if not isinstance(document_hash, (bytes, bytearray)) or len(document_hash) != DIGEST_LENGTH:
        raise InputError(
            f"document hash must be {DIGEST_LENGTH} bytes"
        )

    if not isinstance(timestamp, str) or not timestamp:
        raise InputError("signing timestamp must be a non-empty string")

    return canonical_json(
        {
            "documentHash": bytes_to_hex(document_hash),
            "email": normalize_email(email),
            "timestamp": timestamp,
            "version": PROTOCOL_VERSION,
        }
    )
