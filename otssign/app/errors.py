"""
Error taxonomy for the signing and integrity protocol.

Every failure the protocol can report is one of the kinds below. Library
exceptions (cryptography, pydantic, json, binascii) are translated into
these at module boundaries so callers never need to know which backend
produced them.

Wrong credentials are NOT an error kind: they produce a
different, valid-looking keypair and only surface later as an
InvalidSignatureError during verification.
"""

from __future__ import annotations

from typing import Optional


class OtsSignError(Exception):
    """Base class for all protocol errors."""


class ValidationError(OtsSignError):
    """
    Malformed or incomplete bundle.

    Raised on load (missing version, missing document payload, broken
    references). Loading is atomic: no partial state is ever returned.
    """


class InputError(OtsSignError):
    """Malformed caller input (key/signature byte lengths, encodings, ids)."""


class WeakPasswordError(InputError):
    """Password rejected by the configured strength policy."""


class IntegrityError(OtsSignError):
    """Recomputed hash does not match a previously recorded hash."""


class InvalidSignatureError(OtsSignError):
    """A recorded signature does not verify."""

    def __init__(self, message: str, *, signer_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.signer_id = signer_id


class IncompleteError(OtsSignError):
    """Required fields are unfilled (or no value was captured for them)."""


class StateError(OtsSignError):
    """Operation is not permitted in the bundle's current state."""


class SessionBusyError(StateError):
    """A sign operation is in flight; the bundle cannot be mutated."""


__all__ = [
    "OtsSignError",
    "ValidationError",
    "InputError",
    "WeakPasswordError",
    "IntegrityError",
    "InvalidSignatureError",
    "IncompleteError",
    "StateError",
    "SessionBusyError",
]
