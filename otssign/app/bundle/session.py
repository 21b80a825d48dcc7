"""
Signing session: the explicit context object that owns one bundle.

The session replaces process-wide mutable state. It exposes preparer
CRUD, the sign operation, finalization, and commitment/anchoring over a
single in-memory bundle.

Sign operation (per signer S):
    1. derive S's keypair from the entered credentials
    2. hash the ORIGINAL document bytes
    3. stage values for S's unfilled fields
    4. build the signing message (document hash, S.email, fresh timestamp)
    5. sign it
    6. stage S's signed record
    7. swap in the new bundle (status is recomputed by construction)

Steps 1-6 only ever produce staged values. The bundle reference is
replaced once, at the very end, so a failure or cancellation at any
point leaves the bundle exactly as it was.

Concurrency:
- One sign operation in flight per session. Key stretching and hashing
  run in a worker thread and are the operation's suspension points.
- While a sign is in flight, every other mutation raises
  SessionBusyError.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from anyio import to_thread
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from otssign.app.anchoring.collaborators import DocumentRenderer, TimestampAnchor
from otssign.app.bundle import codec, operations
from otssign.app.config import SigningConfig
from otssign.app.crypto.identity import (
    check_password_strength,
    derive_keypair,
    matches_public_key,
    normalize_email,
)
from otssign.app.crypto.merkle import BundleCommitment, build_commitment
from otssign.app.crypto.message import encode_signing_message
from otssign.app.crypto.signatures import bytes_to_hex, sign, verify
from otssign.app.errors import (
    IncompleteError,
    InputError,
    InvalidSignatureError,
    SessionBusyError,
    StateError,
    WeakPasswordError,
)
from otssign.app.events import (
    NullEventEmitter,
    SigningEvent,
    SigningEventEmitter,
    SigningEventType,
)
from otssign.app.schemas.bundle import (
    Bundle,
    BundleStatus,
    FieldType,
    Signer,
    SigningField,
)
from otssign.app.utils.hashing import compute_document_hash
from otssign.app.utils.timestamps import signing_date, utc_timestamp

logger = logging.getLogger("otssign.session")


# ---------------------------------------------------------------------------
# Sign operation inputs
# ---------------------------------------------------------------------------


class Credentials(BaseModel):
    """Entered credentials. Never persisted, never logged."""

    email: str
    password: SecretStr

    model_config = ConfigDict(frozen=True)


class SignatureCapture(BaseModel):
    """
    Values captured from the signer for their fields.

    - signature_image: fills signature fields and becomes the signer's
      recorded signature image
    - initials_image: fills initials fields
    - values: explicit per-field values keyed by field id (text fields,
      date overrides, optional fields)

    Date fields without an explicit value receive the signing date.
    """

    signature_image: str
    initials_image: Optional[str] = None
    values: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SigningSession:
    def __init__(
        self,
        bundle: Bundle,
        *,
        config: Optional[SigningConfig] = None,
        emitter: Optional[SigningEventEmitter] = None,
        session_id: Optional[str] = None,
        clock: Callable[[], str] = utc_timestamp,
    ) -> None:
        self._bundle = bundle
        self._config = config or SigningConfig()
        self._emitter = emitter or NullEventEmitter()
        self._clock = clock
        self._signing = False

        self.session_id = session_id or str(uuid4())

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def new(cls, name: str, raw_bytes: bytes, **kwargs: Any) -> "SigningSession":
        return cls(codec.create_bundle(name, raw_bytes), **kwargs)

    @classmethod
    def open(cls, content: str | bytes, **kwargs: Any) -> "SigningSession":
        return cls(codec.load_bundle(content), **kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def bundle(self) -> Bundle:
        return self._bundle

    @property
    def status(self) -> BundleStatus:
        return self._bundle.status

    @property
    def busy(self) -> bool:
        return self._signing

    def dump(self) -> str:
        self._ensure_idle()
        return codec.dump_bundle(self._bundle)

    # ------------------------------------------------------------------
    # Preparer CRUD
    # ------------------------------------------------------------------

    def add_signer(self, name: str, email: str) -> Signer:
        self._ensure_idle()
        self._bundle, signer = operations.add_signer(self._bundle, name, email)
        logger.info("signer_added", extra={"signer_id": signer.id})
        return signer

    def remove_signer(self, signer_id: str) -> None:
        self._ensure_idle()
        self._bundle = operations.remove_signer(self._bundle, signer_id)
        logger.info(
            "signer_removed",
            extra={"signer_id": signer_id, "status": self.status.value},
        )

    def add_field(self, **placement: Any) -> SigningField:
        self._ensure_idle()
        self._bundle, field = operations.add_field(self._bundle, **placement)
        return field

    def remove_field(self, field_id: str) -> None:
        self._ensure_idle()
        self._bundle = operations.remove_field(self._bundle, field_id)

    def update_field(self, field_id: str, **updates: Any) -> SigningField:
        self._ensure_idle()
        self._bundle = operations.update_field(self._bundle, field_id, updates)
        return self._bundle.field(field_id)

    # ------------------------------------------------------------------
    # Sign operation (critical section)
    # ------------------------------------------------------------------

    async def sign(
        self,
        signer_id: str,
        credentials: Credentials,
        capture: SignatureCapture,
    ) -> Signer:
        """Sign as ``signer_id``. All-or-nothing."""
        self._ensure_idle()
        self._signing = True
        try:
            await self._emit(
                SigningEventType.SIGN_STARTED,
                {"signer_id": signer_id},
            )

            try:
                signed = await self._sign_staged(signer_id, credentials, capture)
            except Exception as exc:
                logger.warning(
                    "sign_failed",
                    extra={
                        "signer_id": signer_id,
                        "error_type": type(exc).__name__,
                    },
                )
                await self._emit(
                    SigningEventType.SIGN_FAILED,
                    {
                        "signer_id": signer_id,
                        "error": str(exc),
                        "exception_type": type(exc).__name__,
                    },
                )
                raise
        finally:
            self._signing = False

        logger.info(
            "signer_signed",
            extra={
                "signer_id": signed.id,
                "public_key": signed.public_key,
                "status": self.status.value,
            },
        )
        await self._emit(
            SigningEventType.SIGN_COMPLETED,
            {
                "signer_id": signed.id,
                "public_key": signed.public_key,
                "status": self.status.value,
            },
        )
        if self.status is BundleStatus.COMPLETED:
            await self._emit(SigningEventType.BUNDLE_COMPLETED, None)

        return signed

    async def _sign_staged(
        self,
        signer_id: str,
        credentials: Credentials,
        capture: SignatureCapture,
    ) -> Signer:
        snapshot = self._bundle

        signer = snapshot.signer(signer_id)
        if signer is None:
            raise InputError(f"unknown signer {signer_id}")
        if signer.signed:
            raise StateError(f"signer {signer_id} has already signed")

        if normalize_email(credentials.email) != signer.email:
            raise InputError("credentials email does not match the signer")

        password = credentials.password.get_secret_value()
        self._check_password_policy(password)

        FieldType.SIGNATURE.validate_value(capture.signature_image)

        timestamp = self._clock()
        staged_fields = self._stage_field_values(snapshot, signer, capture, timestamp)

        # Suspension points: key stretching and document hashing
        keypair = await to_thread.run_sync(
            derive_keypair, signer.email, password
        )
        document_hash = await to_thread.run_sync(
            compute_document_hash, snapshot.document.data
        )

        message = encode_signing_message(document_hash, signer.email, timestamp)
        signature = sign(message, keypair.secret_key)

        if not verify(message, signature, keypair.public_key):
            raise InvalidSignatureError(
                "freshly produced signature failed self-verification",
                signer_id=signer_id,
            )

        signed = signer.model_copy(
            update={
                "signed": True,
                "signed_at": timestamp,
                "public_key": keypair.formatted_public_key,
                "signature_image": capture.signature_image,
                "crypto_signature": bytes_to_hex(signature),
            }
        )

        if self._bundle is not snapshot:
            raise StateError("bundle changed while the sign operation was in flight")

        # Single atomic swap
        self._bundle = snapshot.model_copy(
            update={
                "signers": [signed if s.id == signer_id else s for s in snapshot.signers],
                "fields": [staged_fields.get(f.id, f) for f in snapshot.fields],
            }
        )
        return signed

    def _stage_field_values(
        self,
        bundle: Bundle,
        signer: Signer,
        capture: SignatureCapture,
        timestamp: str,
    ) -> Dict[str, SigningField]:
        own = {f.id: f for f in operations.fields_for_signer(bundle, signer.id)}

        foreign = set(capture.values) - set(own)
        if foreign:
            raise InputError(
                f"captured values for fields not owned by signer: {sorted(foreign)}"
            )

        defaults = {
            FieldType.SIGNATURE: capture.signature_image,
            FieldType.INITIALS: capture.initials_image,
            FieldType.DATE: signing_date(timestamp),
            FieldType.TEXT: None,
        }

        staged: Dict[str, SigningField] = {}
        missing: List[str] = []

        for field in own.values():
            if field.value is not None:
                continue

            value = capture.values.get(field.id, defaults[field.type])
            if value is None:
                if field.required:
                    missing.append(field.id)
                continue

            staged[field.id] = field.model_copy(
                update={"value": field.type.validate_value(value)}
            )

        if missing:
            raise IncompleteError(
                f"no captured value for required fields: {sorted(missing)}"
            )

        return staged

    def _check_password_policy(self, password: str) -> None:
        if not self._config.ENFORCE_PASSWORD_STRENGTH:
            return

        strength = check_password_strength(password)
        if strength.score < self._config.MIN_PASSWORD_SCORE:
            raise WeakPasswordError(
                "password too weak; needs " + ", ".join(strength.feedback or ["more length"])
            )

    # ------------------------------------------------------------------
    # Identity confirmation
    # ------------------------------------------------------------------

    async def confirm_identity(self, signer_id: str, credentials: Credentials) -> bool:
        """Whether these credentials derive the signer's recorded public key."""
        signer = self._bundle.signer(signer_id)
        if signer is None:
            raise InputError(f"unknown signer {signer_id}")
        if signer.public_key is None:
            return False

        return await to_thread.run_sync(
            matches_public_key,
            credentials.email,
            credentials.password.get_secret_value(),
            signer.public_key,
        )

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def commitment(self) -> BundleCommitment:
        """Merkle commitment over the current (frozen) leaf set."""
        return build_commitment(self._bundle)

    async def finalize(self, renderer: DocumentRenderer) -> Bundle:
        """Render the completed document once every signer has signed."""
        self._ensure_idle()
        self._ensure_completed()

        snapshot = self._bundle
        rendered = await renderer.render(
            snapshot.document.data,
            list(snapshot.fields),
            list(snapshot.signers),
        )

        if self._bundle is not snapshot:
            raise StateError("bundle changed while rendering")

        self._bundle = codec.set_completed_document(snapshot, rendered)
        await self._emit(
            SigningEventType.BUNDLE_FINALIZED,
            {"completed_size": len(rendered)},
        )
        return self._bundle

    async def anchor(self, anchor: TimestampAnchor) -> BundleCommitment:
        """Commit to the final leaf set and record the anchor's proof."""
        self._ensure_idle()
        self._ensure_completed()

        snapshot = self._bundle
        commitment = build_commitment(snapshot)
        await self._emit(
            SigningEventType.COMMITMENT_BUILT,
            {"root": commitment.root, "leaf_count": commitment.leaf_count},
        )

        proof = await anchor.submit(commitment.root)

        if self._bundle is not snapshot:
            raise StateError("bundle changed while anchoring")

        self._bundle = snapshot.model_copy(
            update={
                "timestamp_proof": {
                    "merkleRoot": commitment.root,
                    "leafCount": commitment.leaf_count,
                    "anchoredAt": self._clock(),
                    "proof": proof,
                }
            }
        )

        logger.info("timestamp_anchored", extra={"root": commitment.root})
        await self._emit(
            SigningEventType.TIMESTAMP_ANCHORED,
            {"root": commitment.root},
        )
        return commitment

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self._signing:
            raise SessionBusyError("a sign operation is in flight")

    def _ensure_completed(self) -> None:
        if self._bundle.status is not BundleStatus.COMPLETED:
            raise IncompleteError(
                f"bundle is {self._bundle.status.value}; every signer must sign first"
            )
        if not operations.is_complete(self._bundle):
            raise IncompleteError("bundle has unfilled required fields")

    async def _emit(
        self,
        event_type: SigningEventType,
        details: Optional[Dict[str, Any]],
    ) -> None:
        try:
            await self._emitter.emit(
                SigningEvent(
                    session_id=self.session_id,
                    event_type=event_type,
                    details=details,
                )
            )
        except Exception:
            # Observability must never break signing
            logger.exception("event_emission_failed")
