"""
Cryptographic hashing and canonical encoding primitives.

Current scope:
- SHA-256 over raw bytes
- Compact JSON encoding used for every hashed or signed record

IMPORTANT DESIGN RULE:
- This module hashes bytes, and bytes only.
- Canonical JSON here MUST match the reference encoder byte for byte:
  insertion-ordered keys, no whitespace, non-ASCII emitted verbatim.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Mapping, Union


def sha256(data: Union[bytes, bytearray, str]) -> bytes:
    """
    Compute a raw 32-byte SHA-256 digest.

    Strings are encoded as UTF-8 first.
    """
    if isinstance(data, str):
        data = data.encode("utf-8")

    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(
            "sha256 expects bytes or str, "
            f"got {type(data).__name__}"
        )

    return hashlib.sha256(data).digest()


def compute_document_hash(raw_bytes: Union[bytes, bytearray]) -> bytes:
    """
    Hash the ORIGINAL document bytes.

    IMPORTANT:
    - Input MUST be the document exactly as stored at bundle creation.
    - A completed document (with embedded signature images) is a distinct
      artifact and is hashed separately.
    """
    if not isinstance(raw_bytes, (bytes, bytearray)):
        raise TypeError(
            "compute_document_hash expects raw document bytes, "
            f"got {type(raw_bytes).__name__}"
        )

    return hashlib.sha256(raw_bytes).digest()


def canonical_json(record: Mapping[str, Any]) -> bytes:
    """
    Encode a record in the compact wire form.

    Key order is the caller's insertion order, NOT sorted.
    """
    return json.dumps(
        record,
        ensure_ascii=False,
        separators=(",", ":"),
        allow_nan=False,
    ).encode("utf-8")
