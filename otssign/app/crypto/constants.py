"""
Protocol constants (FROZEN WIRE CONTRACT).

Changing any value here changes derived identities or signing messages
and breaks verification of every existing bundle.
"""

PROTOCOL_VERSION = "ots-sign-v1"
SALT_PREFIX = f"{PROTOCOL_VERSION}:"

PBKDF2_ITERATIONS = 100_000
SEED_LENGTH = 32

PUBLIC_KEY_PREFIX = "ed25519:"
PUBLIC_KEY_LENGTH = 32
SECRET_KEY_LENGTH = 64  # seed || public key
SIGNATURE_LENGTH = 64
DIGEST_LENGTH = 32

BUNDLE_VERSION = "1.0"
BUNDLE_EXTENSION = ".ots-sign"
BUNDLE_MIME_TYPE = "application/json"
