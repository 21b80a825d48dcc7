"""
Pure bundle operations (preparer-side CRUD and completion queries).

Every operation takes a Bundle and returns a NEW Bundle; the input is
never modified. Invariants enforced here:

- signer and field ids are unique
- every field references an existing signer
- removing a signer removes that signer's fields
- field values are never set through this module; only a signer's own
  sign operation fills them
"""

from __future__ import annotations

import secrets
import time
from typing import Any, Dict, List, Optional

from otssign.app.crypto.identity import normalize_email
from otssign.app.errors import InputError
from otssign.app.schemas.bundle import (
    Bundle,
    BundleStatus,
    FieldType,
    Signer,
    SigningField,
    compute_status,
)


SIGNER_COLORS = (
    "#e63946",
    "#457b9d",
    "#2a9d8f",
    "#e9c46a",
    "#9b5de5",
    "#f72585",
)

# Placement attributes a preparer may change after creation
_UPDATABLE_FIELD_ATTRS = frozenset(
    {"type", "page", "x", "y", "width", "height", "required"}
)


def _new_id(prefix: str, taken: set) -> str:
    while True:
        candidate = f"{prefix}{int(time.time() * 1000)}{secrets.token_hex(3)}"
        if candidate not in taken:
            return candidate


# ------------------------------------------------------------------
# Signers
# ------------------------------------------------------------------


def add_signer(bundle: Bundle, name: str, email: str) -> tuple[Bundle, Signer]:
    normalized = normalize_email(email)
    if not normalized:
        raise InputError("signer email must not be empty")

    if any(s.email == normalized for s in bundle.signers):
        raise InputError(f"a signer with email {normalized} already exists")

    signer = Signer(
        id=_new_id("s", {s.id for s in bundle.signers}),
        name=name,
        email=normalized,
        color=SIGNER_COLORS[len(bundle.signers) % len(SIGNER_COLORS)],
    )

    return bundle.model_copy(update={"signers": [*bundle.signers, signer]}), signer


def remove_signer(bundle: Bundle, signer_id: str) -> Bundle:
    """Remove a signer and cascade-delete their fields."""
    if bundle.signer(signer_id) is None:
        raise InputError(f"unknown signer {signer_id}")

    return bundle.model_copy(
        update={
            "signers": [s for s in bundle.signers if s.id != signer_id],
            "fields": [f for f in bundle.fields if f.signer_id != signer_id],
        }
    )


def pending_signers(bundle: Bundle) -> List[Signer]:
    return [s for s in bundle.signers if not s.signed]


# ------------------------------------------------------------------
# Fields
# ------------------------------------------------------------------


def add_field(
    bundle: Bundle,
    *,
    type: FieldType | str,
    signer_id: str,
    page: int,
    x: float,
    y: float,
    width: Optional[float] = None,
    height: Optional[float] = None,
    required: bool = True,
) -> tuple[Bundle, SigningField]:
    try:
        field_type = FieldType(type)
    except ValueError as exc:
        raise InputError(f"unknown field type {type!r}") from exc

    if bundle.signer(signer_id) is None:
        raise InputError(f"field references unknown signer {signer_id}")

    try:
        field = SigningField(
            id=_new_id("f", {f.id for f in bundle.fields}),
            type=field_type,
            signer_id=signer_id,
            page=page,
            x=x,
            y=y,
            width=width or field_type.default_width,
            height=height or field_type.default_height,
            required=required,
        )
    except ValueError as exc:
        raise InputError(f"invalid field placement: {exc}") from exc

    return bundle.model_copy(update={"fields": [*bundle.fields, field]}), field


def remove_field(bundle: Bundle, field_id: str) -> Bundle:
    if bundle.field(field_id) is None:
        raise InputError(f"unknown field {field_id}")

    return bundle.model_copy(
        update={"fields": [f for f in bundle.fields if f.id != field_id]}
    )


def update_field(bundle: Bundle, field_id: str, updates: Dict[str, Any]) -> Bundle:
    """
    Change placement of a field.

    ``id``, ``signer_id`` and ``value`` are not updatable.
    """
    current = bundle.field(field_id)
    if current is None:
        raise InputError(f"unknown field {field_id}")

    rejected = set(updates) - _UPDATABLE_FIELD_ATTRS
    if rejected:
        raise InputError(f"field attributes not updatable: {sorted(rejected)}")

    try:
        updated = SigningField.model_validate(
            {**current.model_dump(), **updates}
        )
    except ValueError as exc:
        raise InputError(f"invalid field update: {exc}") from exc

    return bundle.model_copy(
        update={
            "fields": [updated if f.id == field_id else f for f in bundle.fields]
        }
    )


def fields_for_signer(bundle: Bundle, signer_id: str) -> List[SigningField]:
    return [f for f in bundle.fields if f.signer_id == signer_id]


def unfilled_fields(bundle: Bundle, signer_id: str) -> List[SigningField]:
    return [f for f in fields_for_signer(bundle, signer_id) if not f.value]


# ------------------------------------------------------------------
# Completion
# ------------------------------------------------------------------


def bundle_status(bundle: Bundle) -> BundleStatus:
    return compute_status(bundle.signers)


def is_complete(bundle: Bundle) -> bool:
    """Every required field carries a value."""
    return all(f.value is not None for f in bundle.fields if f.required)


def is_signer_complete(bundle: Bundle, signer_id: str) -> bool:
    """Signer owns at least one field and all of their required fields are filled."""
    fields = fields_for_signer(bundle, signer_id)
    return bool(fields) and all(f.value is not None for f in fields if f.required)
