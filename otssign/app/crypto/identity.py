"""
Deterministic identity derivation.

A signer's Ed25519 keypair is derived from (email, password):

    salt = "ots-sign-v1:" + normalize(email)
    seed = PBKDF2-HMAC-SHA256(password, salt, 100_000 iterations, 32 bytes)
    keypair = Ed25519 seed expansion (RFC 8032)

There are no key files. The same credentials always yield the same
keypair; a wrong password yields a different, valid-looking keypair and
is only detected later, when a signature fails to verify.

Keypairs are never persisted and the secret key never appears in reprs
or logs.
"""

from __future__ import annotations

import hmac
import re
from typing import List

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel, ConfigDict, Field, computed_field

from otssign.app.crypto.constants import (
    PBKDF2_ITERATIONS,
    SALT_PREFIX,
    SEED_LENGTH,
)
from otssign.app.crypto.signatures import format_public_key


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class Keypair(BaseModel):
    """Transient Ed25519 keypair (NaCl layout)."""

    public_key: bytes = Field(..., min_length=32, max_length=32)
    secret_key: bytes = Field(..., min_length=64, max_length=64, repr=False)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def formatted_public_key(self) -> str:
        return format_public_key(self.public_key)

    model_config = ConfigDict(frozen=True)


class PasswordStrength(BaseModel):
    """Advisory password score. Credential strength bounds key strength."""

    score: int
    max_score: int = 5
    is_strong: bool
    feedback: List[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Derivation
# ---------------------------------------------------------------------------

# Trimmed around emails: tab, VT, FF, space, NBSP, BOM, the Zs space
# separators, and the line terminators LF, CR, LS, PS. Nothing else
# (in particular not U+001C-U+001F or U+0085).
_EMAIL_PADDING = (
    "\t\v\f \u00a0\ufeff"
    "\u1680\u2000\u2001\u2002\u2003\u2004\u2005\u2006\u2007\u2008\u2009\u200a"
    "\u202f\u205f\u3000"
    "\n\r\u2028\u2029"
)


def normalize_email(email: str) -> str:
    """
    Normalize an email for cryptographic use.

    MUST be applied identically at derivation, signing, and verification
    time, or identities silently diverge.
    """
    return email.strip(_EMAIL_PADDING).lower()


def derive_seed(email: str, password: str) -> bytes:
    """Stretch the password into a 32-byte Ed25519 seed."""
    salt = (SALT_PREFIX + normalize_email(email)).encode("utf-8")

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=SEED_LENGTH,
        salt=salt,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


def derive_keypair(email: str, password: str) -> Keypair:
    """Derive the signer's keypair. Pure and deterministic. Slow (key stretching)."""
    seed = derive_seed(email, password)

    private_key = Ed25519PrivateKey.from_private_bytes(seed)
    public_key = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )

    return Keypair(public_key=public_key, secret_key=seed + public_key)


def matches_public_key(email: str, password: str, formatted: str) -> bool:
    """Whether these credentials derive the given recorded public key."""
    derived = derive_keypair(email, password).formatted_public_key
    return hmac.compare_digest(derived.encode("ascii"), formatted.encode("utf-8"))


# ---------------------------------------------------------------------------
# Password strength (advisory)
# ---------------------------------------------------------------------------


def check_password_strength(password: str) -> PasswordStrength:
    """
    Score a password from 0 to 5.

    One point each for: at least 8 characters, at least 12 characters,
    mixed case, a digit, a non-alphanumeric character.
    """
    score = 0
    feedback: List[str] = []

    if len(password) < 8:
        feedback.append("at least 8 characters")
    else:
        score += 1

    if len(password) >= 12:
        score += 1

    if re.search(r"[a-z]", password) and re.search(r"[A-Z]", password):
        score += 1
    else:
        feedback.append("mix of upper and lowercase")

    if re.search(r"[0-9]", password):
        score += 1
    else:
        feedback.append("at least one number")

    if re.search(r"[^a-zA-Z0-9]", password):
        score += 1

    return PasswordStrength(
        score=score,
        is_strong=score >= 3,
        feedback=feedback,
    )
