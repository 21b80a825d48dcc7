"""
Bundle schema (``.ots-sign`` wire format).

A bundle is the persisted unit of document, signer, and field state that
is handed from signer to signer as a file. This schema is the
authoritative in-memory representation of that file.

Wire format (camelCase keys, JSON):

    { version, created, modified,
      document: { name, size, data: <base64> },
      signers:  [ { id, name, email, color, signed, signedAt,
                    publicKey, signatureImage, cryptoSignature } ],
      fields:   [ { id, type, signerId, page, x, y, width, height,
                    required, value } ],
      status,
      completedDocument: { data: <base64>, completedAt } | null,
      timestampProof: <opaque> | null }

IMPORTANT:
- All models are frozen. Mutation happens by producing a new Bundle
  (``model_copy(update=...)``), which makes multi-step operations atomic.
- ``status`` is computed from ``signers[].signed``. It is emitted on the
  wire but never accepted from input.
- The original document bytes never change after creation.
"""

from __future__ import annotations

import base64
import binascii
from datetime import date
from enum import Enum
from typing import Any, List, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from otssign.app.crypto.identity import normalize_email
from otssign.app.errors import InputError


_WIRE_CONFIG = ConfigDict(
    frozen=True,
    populate_by_name=True,
    alias_generator=to_camel,
)


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class BundleStatus(str, Enum):
    """
    Completion state of a bundle.

    draft -> in_progress -> completed for a fixed signer set. Removing a
    signer may move it backwards, which is legitimate.
    """

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class FieldType(str, Enum):
    """Closed set of field kinds a preparer can place."""

    SIGNATURE = "signature"
    INITIALS = "initials"
    DATE = "date"
    TEXT = "text"

    @property
    def default_width(self) -> float:
        return _DEFAULT_DIMENSIONS[self][0]

    @property
    def default_height(self) -> float:
        return _DEFAULT_DIMENSIONS[self][1]

    @property
    def is_image(self) -> bool:
        return self in (FieldType.SIGNATURE, FieldType.INITIALS)

    def validate_value(self, value: Any) -> str:
        """
        Check the shape of a captured value for this field kind.

        - signature / initials: an image data URL
        - date: ISO calendar date (YYYY-MM-DD)
        - text: any non-empty string
        """
        if not isinstance(value, str) or not value.strip():
            raise InputError(f"{self.value} field value must be a non-empty string")

        if self.is_image and not value.startswith("data:image/"):
            raise InputError(f"{self.value} field value must be an image data URL")

        if self is FieldType.DATE:
            try:
                date.fromisoformat(value)
            except ValueError as exc:
                raise InputError(
                    f"date field value must be YYYY-MM-DD, got {value!r}"
                ) from exc

        return value


# Default dimensions in PDF points (width, height)
_DEFAULT_DIMENSIONS = {
    FieldType.SIGNATURE: (200.0, 60.0),
    FieldType.INITIALS: (80.0, 40.0),
    FieldType.DATE: (120.0, 20.0),
    FieldType.TEXT: (150.0, 20.0),
}


# ---------------------------------------------------------------------------
# Base64 payload helpers
# ---------------------------------------------------------------------------


def _decode_base64(value: Any) -> Any:
    if isinstance(value, str):
        try:
            decoded = base64.b64decode(value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError(f"invalid base64 payload: {exc}") from exc

        # Canonical encoding only: non-zero padding bits would alias other text
        if _encode_base64(decoded) != value:
            raise ValueError("base64 payload is not canonically encoded")
        return decoded
    return value


def _encode_base64(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


class DocumentPayload(BaseModel):
    """The original document. Immutable once the bundle exists."""

    name: str
    size: int = Field(..., ge=0)
    data: bytes

    @field_validator("data", mode="before")
    @classmethod
    def decode_data(cls, v: Any) -> Any:
        return _decode_base64(v)

    @field_serializer("data")
    def serialize_data(self, value: bytes) -> str:
        return _encode_base64(value)

    model_config = _WIRE_CONFIG


class CompletedDocument(BaseModel):
    """Post-signing artifact (rendered images embedded). Hashed separately."""

    data: bytes
    completed_at: str

    @field_validator("data", mode="before")
    @classmethod
    def decode_data(cls, v: Any) -> Any:
        return _decode_base64(v)

    @field_serializer("data")
    def serialize_data(self, value: bytes) -> str:
        return _encode_base64(value)

    model_config = _WIRE_CONFIG


class Signer(BaseModel):
    """
    A party expected to sign.

    Created unsigned by the preparer. Transitions unsigned -> signed exactly
    once, by that signer's own sign operation.
    """

    id: str = Field(..., min_length=1)
    name: str
    email: str
    color: str = "#666666"
    signed: bool = False
    signed_at: Optional[str] = None
    public_key: Optional[str] = None
    signature_image: Optional[str] = None
    crypto_signature: Optional[str] = Field(
        None,
        description="Lower-case hex of the 64-byte Ed25519 signature",
    )

    @field_validator("email")
    @classmethod
    def normalize_signer_email(cls, v: str) -> str:
        return normalize_email(v)

    model_config = _WIRE_CONFIG


class SigningField(BaseModel):
    """A placed field owned by exactly one signer."""

    id: str = Field(..., min_length=1)
    type: FieldType
    signer_id: str
    page: int = Field(0, ge=0, description="0-indexed page number")
    x: float
    y: float
    width: float = Field(..., gt=0)
    height: float = Field(..., gt=0)
    required: bool = True
    value: Optional[str] = None

    model_config = _WIRE_CONFIG


# ---------------------------------------------------------------------------
# Bundle
# ---------------------------------------------------------------------------


def compute_status(signers: List[Signer]) -> BundleStatus:
    """Pure function of ``signers[].signed``."""
    if not signers:
        return BundleStatus.DRAFT
    if all(s.signed for s in signers):
        return BundleStatus.COMPLETED
    if any(s.signed for s in signers):
        return BundleStatus.IN_PROGRESS
    return BundleStatus.DRAFT


class Bundle(BaseModel):
    """Authoritative document + signer + field state."""

    version: str = Field(..., min_length=1)
    created: str
    modified: str
    document: DocumentPayload
    signers: List[Signer] = Field(default_factory=list)
    fields: List[SigningField] = Field(default_factory=list)
    completed_document: Optional[CompletedDocument] = None
    timestamp_proof: Optional[Any] = Field(
        None,
        validation_alias=AliasChoices("timestampProof", "timestamp_proof", "timestamp"),
        serialization_alias="timestampProof",
        description="Opaque anchoring proof over the Merkle root",
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> BundleStatus:
        return compute_status(self.signers)

    @model_validator(mode="after")
    def enforce_reference_invariants(self) -> "Bundle":
        """
        - signer ids are unique
        - field ids are unique
        - every field's signerId resolves to an existing signer
        """
        signer_ids = [s.id for s in self.signers]
        if len(signer_ids) != len(set(signer_ids)):
            raise ValueError("duplicate signer id")

        field_ids = [f.id for f in self.fields]
        if len(field_ids) != len(set(field_ids)):
            raise ValueError("duplicate field id")

        known = set(signer_ids)
        for f in self.fields:
            if f.signer_id not in known:
                raise ValueError(
                    f"field {f.id} references unknown signer {f.signer_id}"
                )

        return self

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def signer(self, signer_id: str) -> Optional[Signer]:
        return next((s for s in self.signers if s.id == signer_id), None)

    def field(self, field_id: str) -> Optional[SigningField]:
        return next((f for f in self.fields if f.id == field_id), None)

    def to_wire(self) -> dict:
        """JSON-ready dict using wire (camelCase) keys."""
        return self.model_dump(mode="json", by_alias=True)

    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        extra="ignore",
    )
