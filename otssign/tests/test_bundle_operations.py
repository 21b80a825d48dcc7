import pytest

from otssign.app.bundle import codec, operations
from otssign.app.errors import InputError
from otssign.app.schemas.bundle import BundleStatus, FieldType

from otssign.tests.fixtures.bundle_factory import (
    ALICE,
    BOB,
    SAMPLE_PDF,
    draft_bundle,
    signer_id_for,
)


def test_new_bundle_is_empty_draft():
    bundle = codec.create_bundle("contract.pdf", SAMPLE_PDF)

    assert bundle.status is BundleStatus.DRAFT
    assert bundle.signers == []
    assert bundle.fields == []
    assert bundle.document.size == len(SAMPLE_PDF)
    assert bundle.document.data == SAMPLE_PDF


def test_add_signer_normalizes_email_and_assigns_color():
    bundle = codec.create_bundle("contract.pdf", SAMPLE_PDF)
    updated, signer = operations.add_signer(bundle, "Alice", "  Alice@Example.COM ")

    assert bundle.signers == []
    assert signer.email == "alice@example.com"
    assert signer.color == operations.SIGNER_COLORS[0]
    assert signer.signed is False
    assert updated.signer(signer.id) == signer


def test_duplicate_and_empty_emails_are_rejected():
    bundle = draft_bundle([ALICE])

    with pytest.raises(InputError):
        operations.add_signer(bundle, "Alice again", "ALICE@example.com")

    with pytest.raises(InputError):
        operations.add_signer(bundle, "Nobody", "   ")


def test_remove_signer_cascades_fields():
    bundle = draft_bundle(with_date=True)
    alice_id = signer_id_for(bundle, ALICE[1])
    bob_id = signer_id_for(bundle, BOB[1])

    updated = operations.remove_signer(bundle, alice_id)

    assert updated.signer(alice_id) is None
    assert operations.fields_for_signer(updated, alice_id) == []
    assert len(operations.fields_for_signer(updated, bob_id)) == 2


def test_remove_unknown_signer_is_input_error():
    with pytest.raises(InputError):
        operations.remove_signer(draft_bundle(), "missing")


def test_add_field_uses_default_dimensions():
    bundle = draft_bundle([ALICE])
    alice_id = signer_id_for(bundle, ALICE[1])

    _, field = operations.add_field(
        bundle,
        type="initials",
        signer_id=alice_id,
        page=1,
        x=10,
        y=20,
    )

    assert field.type is FieldType.INITIALS
    assert (field.width, field.height) == (80.0, 40.0)
    assert field.required is True
    assert field.value is None


def test_add_field_rejects_unknown_signer_and_type():
    bundle = draft_bundle([ALICE])
    alice_id = signer_id_for(bundle, ALICE[1])

    with pytest.raises(InputError):
        operations.add_field(bundle, type="signature", signer_id="ghost", page=0, x=0, y=0)

    with pytest.raises(InputError):
        operations.add_field(bundle, type="stamp", signer_id=alice_id, page=0, x=0, y=0)

    with pytest.raises(InputError):
        operations.add_field(bundle, type="text", signer_id=alice_id, page=-1, x=0, y=0)


def test_update_field_changes_placement_only():
    bundle = draft_bundle([ALICE])
    field = bundle.fields[0]

    updated = operations.update_field(bundle, field.id, {"x": 400, "required": False})
    moved = updated.field(field.id)

    assert moved.x == 400
    assert moved.required is False
    assert moved.signer_id == field.signer_id

    with pytest.raises(InputError):
        operations.update_field(bundle, field.id, {"value": "forged"})

    with pytest.raises(InputError):
        operations.update_field(bundle, field.id, {"signer_id": "other"})

    with pytest.raises(InputError):
        operations.update_field(bundle, field.id, {"width": 0})


def test_remove_field():
    bundle = draft_bundle([ALICE])
    field = bundle.fields[0]

    assert operations.remove_field(bundle, field.id).fields == []

    with pytest.raises(InputError):
        operations.remove_field(bundle, "missing")


def test_completion_queries_on_unsigned_bundle():
    bundle = draft_bundle()
    alice_id = signer_id_for(bundle, ALICE[1])

    assert operations.bundle_status(bundle) is BundleStatus.DRAFT
    assert operations.is_complete(bundle) is False
    assert operations.is_signer_complete(bundle, alice_id) is False
    assert len(operations.unfilled_fields(bundle, alice_id)) == 1
    assert len(operations.pending_signers(bundle)) == 2


def test_status_follows_signed_flags():
    bundle = draft_bundle()
    first, second = bundle.signers

    partly = bundle.model_copy(
        update={"signers": [first.model_copy(update={"signed": True}), second]}
    )
    fully = bundle.model_copy(
        update={
            "signers": [s.model_copy(update={"signed": True}) for s in bundle.signers]
        }
    )

    assert partly.status is BundleStatus.IN_PROGRESS
    assert fully.status is BundleStatus.COMPLETED
    assert operations.remove_signer(partly, first.id).status is BundleStatus.DRAFT
