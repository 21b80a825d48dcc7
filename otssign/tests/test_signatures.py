import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from otssign.app.crypto.signatures import (
    format_public_key,
    hex_to_bytes,
    parse_public_key,
    sign,
    verify,
)
from otssign.app.errors import InputError


def _nacl_keypair():
    private_key = Ed25519PrivateKey.generate()
    seed = private_key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_key = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return seed + public_key, public_key


def test_sign_then_verify():
    secret_key, public_key = _nacl_keypair()
    signature = sign(b"message", secret_key)

    assert len(signature) == 64
    assert verify(b"message", signature, public_key)


def test_signatures_are_deterministic():
    secret_key, _ = _nacl_keypair()

    assert sign(b"message", secret_key) == sign(b"message", secret_key)


def test_any_changed_byte_fails_verification():
    secret_key, public_key = _nacl_keypair()
    signature = sign(b"message", secret_key)

    assert not verify(b"messagf", signature, public_key)

    tampered = bytes([signature[0] ^ 0x01]) + signature[1:]
    assert not verify(b"message", tampered, public_key)

    _, other_public_key = _nacl_keypair()
    assert not verify(b"message", signature, other_public_key)


def test_wrong_lengths_are_input_errors():
    secret_key, public_key = _nacl_keypair()

    with pytest.raises(InputError):
        sign(b"message", secret_key[:32])

    with pytest.raises(InputError):
        verify(b"message", b"\x00" * 63, public_key)

    with pytest.raises(InputError):
        verify(b"message", b"\x00" * 64, public_key[:31])


def test_public_key_format():
    raw = bytes(range(32))
    formatted = format_public_key(raw)

    assert formatted == "ed25519:" + raw.hex()
    assert parse_public_key(formatted) == raw


@pytest.mark.parametrize(
    "formatted",
    [
        "x25519:" + "00" * 32,
        "ed25519:" + "00" * 31,
        "ed25519:" + "zz" * 32,
        "00" * 32,
    ],
)
def test_malformed_public_keys_are_rejected(formatted):
    with pytest.raises(InputError):
        parse_public_key(formatted)


def test_hex_decoding_is_strict():
    assert hex_to_bytes("00ff") == b"\x00\xff"

    with pytest.raises(InputError):
        hex_to_bytes("abc")

    with pytest.raises(InputError):
        hex_to_bytes("zz")
