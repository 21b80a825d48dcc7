from types import SimpleNamespace
from unittest.mock import AsyncMock

import anyio
import pytest

from otssign.app.bundle import session as session_module
from otssign.app.bundle.session import Credentials, SignatureCapture, SigningSession
from otssign.app.config import SigningConfig
from otssign.app.crypto.merkle import DOCUMENT_LEAF, verify_proof
from otssign.app.crypto.message import encode_signing_message
from otssign.app.crypto.signatures import hex_to_bytes, parse_public_key, verify
from otssign.app.errors import (
    IncompleteError,
    InputError,
    SessionBusyError,
    StateError,
    WeakPasswordError,
)
from otssign.app.events import MemoryQueueEventEmitter, SigningEventType
from otssign.app.schemas.bundle import BundleStatus, FieldType
from otssign.app.utils.hashing import compute_document_hash

from otssign.tests.fixtures.bundle_factory import (
    ALICE,
    BOB,
    SAMPLE_PDF,
    SIGNATURE_IMAGE,
    capture,
    credentials_for,
    draft_bundle,
    signer_id_for,
)

pytestmark = pytest.mark.anyio

FIXED_TIME = "2025-03-01T09:30:00.000Z"


def fixed_clock() -> str:
    return FIXED_TIME


class ListEmitter:
    def __init__(self):
        self.events = []

    async def emit(self, event) -> None:
        self.events.append(event)

    def types(self):
        return [e.event_type for e in self.events]


def _session(bundle=None, **kwargs) -> SigningSession:
    kwargs.setdefault("clock", fixed_clock)
    return SigningSession(bundle or draft_bundle(), **kwargs)


async def _fully_signed(**kwargs) -> SigningSession:
    session = _session(**kwargs)
    for person in (ALICE, BOB):
        await session.sign(
            signer_id_for(session.bundle, person[1]),
            credentials_for(person),
            capture(),
        )
    return session


# ---------------------------------------------------------------------------
# Sign operation
# ---------------------------------------------------------------------------


async def test_sign_records_verifiable_signature():
    session = _session(draft_bundle(with_date=True))
    alice_id = signer_id_for(session.bundle, ALICE[1])

    signed = await session.sign(alice_id, credentials_for(ALICE), capture())

    assert signed.signed is True
    assert signed.signed_at == FIXED_TIME
    assert signed.signature_image == SIGNATURE_IMAGE
    assert session.status is BundleStatus.IN_PROGRESS

    message = encode_signing_message(
        compute_document_hash(SAMPLE_PDF), ALICE[1], FIXED_TIME
    )
    assert verify(
        message,
        hex_to_bytes(signed.crypto_signature),
        parse_public_key(signed.public_key),
    )

    values = {f.type: f.value for f in session.bundle.fields if f.signer_id == alice_id}
    assert values == {FieldType.SIGNATURE: SIGNATURE_IMAGE, FieldType.DATE: "2025-03-01"}


async def test_last_signer_completes_bundle():
    session = await _fully_signed()

    assert session.status is BundleStatus.COMPLETED
    assert all(f.value is not None for f in session.bundle.fields)


async def test_credentials_email_must_match_signer():
    session = _session()
    before = session.bundle

    with pytest.raises(InputError):
        await session.sign(
            signer_id_for(before, ALICE[1]),
            credentials_for(BOB),
            capture(),
        )

    assert session.bundle is before
    assert session.busy is False


async def test_unknown_and_already_signed_signers():
    session = _session()
    alice_id = signer_id_for(session.bundle, ALICE[1])

    with pytest.raises(InputError):
        await session.sign("ghost", credentials_for(ALICE), capture())

    await session.sign(alice_id, credentials_for(ALICE), capture())

    with pytest.raises(StateError):
        await session.sign(alice_id, credentials_for(ALICE), capture())


async def test_missing_required_text_value_leaves_bundle_untouched():
    session = _session(draft_bundle([ALICE]))
    alice_id = signer_id_for(session.bundle, ALICE[1])
    text_field = session.add_field(
        type="text", signer_id=alice_id, page=0, x=10, y=10
    )
    before = session.bundle

    with pytest.raises(IncompleteError):
        await session.sign(alice_id, credentials_for(ALICE), capture())

    assert session.bundle is before
    assert session.bundle.signer(alice_id).signed is False

    await session.sign(
        alice_id, credentials_for(ALICE), capture(**{text_field.id: "ACME Ltd."})
    )
    assert session.bundle.field(text_field.id).value == "ACME Ltd."


async def test_values_for_other_signers_fields_are_rejected():
    session = _session()
    alice_id = signer_id_for(session.bundle, ALICE[1])
    bob_id = signer_id_for(session.bundle, BOB[1])
    bob_field = next(f for f in session.bundle.fields if f.signer_id == bob_id)

    with pytest.raises(InputError):
        await session.sign(
            alice_id,
            credentials_for(ALICE),
            capture(**{bob_field.id: SIGNATURE_IMAGE}),
        )


async def test_signature_image_must_be_data_url():
    session = _session()

    with pytest.raises(InputError):
        await session.sign(
            signer_id_for(session.bundle, ALICE[1]),
            credentials_for(ALICE),
            SignatureCapture(signature_image="not-an-image"),
        )


async def test_weak_password_rejected_when_enforced():
    session = _session(config=SigningConfig(ENFORCE_PASSWORD_STRENGTH=True))

    with pytest.raises(WeakPasswordError):
        await session.sign(
            signer_id_for(session.bundle, ALICE[1]),
            Credentials(email=ALICE[1], password="abc"),
            capture(),
        )


async def test_credentials_never_reach_repr():
    credentials = credentials_for(ALICE)

    assert ALICE[2] not in repr(credentials)


# ---------------------------------------------------------------------------
# Atomicity and exclusivity
# ---------------------------------------------------------------------------


async def test_failure_after_crypto_leaves_bundle_untouched(monkeypatch):
    emitter = ListEmitter()
    session = _session(emitter=emitter)
    before = session.bundle

    def broken_sign(message, secret_key):
        raise RuntimeError("signer backend exploded")

    monkeypatch.setattr(session_module, "sign", broken_sign)

    with pytest.raises(RuntimeError):
        await session.sign(
            signer_id_for(before, ALICE[1]), credentials_for(ALICE), capture()
        )

    assert session.bundle is before
    assert session.busy is False
    assert emitter.types() == [
        SigningEventType.SIGN_STARTED,
        SigningEventType.SIGN_FAILED,
    ]


async def test_cancellation_mid_sign_leaves_bundle_untouched(monkeypatch):
    entered = anyio.Event()

    async def stalled_run_sync(func, *args, **kwargs):
        entered.set()
        await anyio.sleep_forever()

    monkeypatch.setattr(
        session_module, "to_thread", SimpleNamespace(run_sync=stalled_run_sync)
    )

    session = _session()
    before = session.bundle

    async with anyio.create_task_group() as tg:
        tg.start_soon(
            session.sign,
            signer_id_for(before, ALICE[1]),
            credentials_for(ALICE),
            capture(),
        )
        await entered.wait()
        assert session.busy is True
        tg.cancel_scope.cancel()

    assert session.bundle is before
    assert session.busy is False
    assert session.status is BundleStatus.DRAFT


async def test_mutations_rejected_while_signing():
    session = _session()
    observed = []

    class ProbeEmitter:
        async def emit(self, event):
            if event.event_type is not SigningEventType.SIGN_STARTED:
                return
            for attempt in (
                lambda: session.add_signer("Carol", "carol@example.com"),
                lambda: session.remove_field(session.bundle.fields[0].id),
                lambda: session.dump(),
            ):
                try:
                    attempt()
                except SessionBusyError as exc:
                    observed.append(exc)
            try:
                await session.sign(
                    signer_id_for(session.bundle, BOB[1]),
                    credentials_for(BOB),
                    capture(),
                )
            except SessionBusyError as exc:
                observed.append(exc)

    session._emitter = ProbeEmitter()

    await session.sign(
        signer_id_for(session.bundle, ALICE[1]), credentials_for(ALICE), capture()
    )

    assert len(observed) == 4
    assert len(session.bundle.signers) == 2
    assert session.status is BundleStatus.IN_PROGRESS


async def test_failing_emitter_does_not_break_signing():
    emitter = AsyncMock()
    emitter.emit.side_effect = RuntimeError("queue down")
    session = _session(emitter=emitter)

    signed = await session.sign(
        signer_id_for(session.bundle, ALICE[1]), credentials_for(ALICE), capture()
    )

    assert signed.signed is True


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


async def test_events_stream_in_order():
    emitter = MemoryQueueEventEmitter()
    session = await _fully_signed(emitter=emitter)
    await emitter.close()

    received = [event async for event in emitter.stream()]

    assert [e.event_type for e in received] == [
        SigningEventType.SIGN_STARTED,
        SigningEventType.SIGN_COMPLETED,
        SigningEventType.SIGN_STARTED,
        SigningEventType.SIGN_COMPLETED,
        SigningEventType.BUNDLE_COMPLETED,
    ]
    assert all(e.session_id == session.session_id for e in received)
    assert all(
        ALICE[2] not in str(e.details) and BOB[2] not in str(e.details)
        for e in received
    )


# ---------------------------------------------------------------------------
# Identity confirmation
# ---------------------------------------------------------------------------


async def test_confirm_identity():
    session = _session()
    alice_id = signer_id_for(session.bundle, ALICE[1])

    assert await session.confirm_identity(alice_id, credentials_for(ALICE)) is False

    await session.sign(alice_id, credentials_for(ALICE), capture())

    assert await session.confirm_identity(alice_id, credentials_for(ALICE)) is True
    assert (
        await session.confirm_identity(
            alice_id, credentials_for(ALICE, password="wrong-password")
        )
        is False
    )


# ---------------------------------------------------------------------------
# Completion, commitment, anchoring
# ---------------------------------------------------------------------------


async def test_finalize_requires_completed_bundle():
    renderer = AsyncMock()
    session = _session()

    with pytest.raises(IncompleteError):
        await session.finalize(renderer)

    renderer.render.assert_not_awaited()


async def test_finalize_attaches_completed_document():
    renderer = AsyncMock()
    renderer.render.return_value = b"%PDF-rendered"
    session = await _fully_signed()

    bundle = await session.finalize(renderer)

    assert bundle.completed_document.data == b"%PDF-rendered"
    assert bundle.document.data == SAMPLE_PDF
    document, fields, signers = renderer.render.await_args.args
    assert document == SAMPLE_PDF
    assert len(fields) == 2
    assert len(signers) == 2


async def test_anchor_records_root_and_proof():
    anchor = AsyncMock()
    anchor.submit.return_value = {"ots": "c2VhbGVk"}
    session = await _fully_signed()

    commitment = await session.anchor(anchor)

    anchor.submit.assert_awaited_once_with(commitment.root)
    proof = session.bundle.timestamp_proof
    assert proof["merkleRoot"] == commitment.root
    assert proof["leafCount"] == 3
    assert proof["anchoredAt"] == FIXED_TIME
    assert proof["proof"] == {"ots": "c2VhbGVk"}

    document_proof = commitment.proof_for(DOCUMENT_LEAF)
    assert verify_proof(document_proof.leaf, document_proof.proof, commitment.root)


async def test_anchor_requires_completed_bundle():
    anchor = AsyncMock()
    session = _session()

    with pytest.raises(IncompleteError):
        await session.anchor(anchor)

    anchor.submit.assert_not_awaited()


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def test_dump_and_reopen():
    session = await _fully_signed()

    reopened = SigningSession.open(session.dump())

    assert reopened.status is BundleStatus.COMPLETED
    assert reopened.bundle.signers == session.bundle.signers


async def test_new_session_from_document():
    session = SigningSession.new("lease.pdf", SAMPLE_PDF)
    signer = session.add_signer("Alice", ALICE[1])
    field = session.add_field(type="signature", signer_id=signer.id, page=0, x=1, y=2)

    moved = session.update_field(field.id, x=99)
    session.remove_signer(signer.id)

    assert moved.x == 99
    assert session.bundle.fields == []
    assert session.status is BundleStatus.DRAFT
