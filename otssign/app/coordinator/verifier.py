"""
Bundle verification coordinator.

Re-opens a bundle and checks, for every signer, that the recorded
signature is a valid Ed25519 signature over the canonical signing
message rebuilt from the ORIGINAL document bytes. Any change to the
document payload or to a signer record makes the affected checks fail.

IMPORTANT:
- Verification NEVER halts at the first failure. Every signer and every
  bundle-level check runs; all results are reported together.
- The strict helpers (verify_signer, ensure_document_hash,
  ensure_recorded_root) raise the protocol errors directly and are what
  the coordinator runs per check.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any, List, Optional, Tuple, Union

from otssign.app.anchoring.collaborators import TimestampAnchor
from otssign.app.config import SigningConfig
from otssign.app.crypto.constants import SIGNATURE_LENGTH
from otssign.app.crypto.merkle import build_commitment, hash_signer
from otssign.app.crypto.message import encode_signing_message
from otssign.app.crypto.signatures import (
    bytes_to_hex,
    hex_to_bytes,
    parse_public_key,
    verify,
)
from otssign.app.errors import (
    InputError,
    IntegrityError,
    InvalidSignatureError,
    StateError,
)
from otssign.app.schemas.bundle import Bundle, BundleStatus, Signer
from otssign.app.schemas.findings import (
    Severity,
    VerificationCheck,
    VerificationFinding as Finding,
)
from otssign.app.schemas.verification_report import (
    SignerVerification,
    VerificationReport,
)
from otssign.app.utils.hashing import compute_document_hash, sha256

logger = logging.getLogger("otssign.verifier")


# ---------------------------------------------------------------------------
# Strict helpers
# ---------------------------------------------------------------------------


def signer_material(signer: Signer) -> Tuple[bytes, bytes]:
    """Decode a signer's recorded (public key, signature)."""
    if not signer.signed:
        raise StateError(f"signer {signer.id} has not signed")

    if not (signer.public_key and signer.crypto_signature and signer.signed_at):
        raise InvalidSignatureError(
            "signed record lacks publicKey, cryptoSignature, or signedAt",
            signer_id=signer.id,
        )

    public_key = parse_public_key(signer.public_key)

    signature = hex_to_bytes(signer.crypto_signature)
    if len(signature) != SIGNATURE_LENGTH:
        raise InputError(
            f"signature must be {SIGNATURE_LENGTH} bytes, got {len(signature)}"
        )

    return public_key, signature


def verify_signer(
    bundle: Bundle,
    signer_id: str,
    *,
    document_hash: Optional[bytes] = None,
) -> None:
    """Raise InvalidSignatureError unless the signer's record verifies."""
    signer = bundle.signer(signer_id)
    if signer is None:
        raise InputError(f"unknown signer {signer_id}")

    public_key, signature = signer_material(signer)

    if document_hash is None:
        document_hash = compute_document_hash(bundle.document.data)

    message = encode_signing_message(document_hash, signer.email, signer.signed_at)

    if not verify(message, signature, public_key):
        raise InvalidSignatureError(
            f"signature of signer {signer_id} does not verify",
            signer_id=signer_id,
        )


def ensure_document_hash(bundle: Bundle, expected: Union[bytes, str]) -> bytes:
    """Raise IntegrityError if the document no longer hashes to ``expected``."""
    expected_bytes = hex_to_bytes(expected) if isinstance(expected, str) else bytes(expected)
    actual = compute_document_hash(bundle.document.data)

    if not hmac.compare_digest(actual, expected_bytes):
        raise IntegrityError(
            f"document hash {bytes_to_hex(actual)} does not match "
            f"recorded {bytes_to_hex(expected_bytes)}"
        )
    return actual


def recorded_root(bundle: Bundle) -> Optional[str]:
    proof = bundle.timestamp_proof
    if isinstance(proof, dict) and isinstance(proof.get("merkleRoot"), str):
        return proof["merkleRoot"]
    return None


def ensure_recorded_root(bundle: Bundle) -> str:
    """Raise IntegrityError if the recorded Merkle root no longer matches."""
    recorded = recorded_root(bundle)
    if recorded is None:
        raise IntegrityError("timestamp proof does not record a Merkle root")

    current = build_commitment(bundle).root
    if recorded.lower() != current:
        raise IntegrityError(
            f"recorded Merkle root {recorded} does not match recomputed {current}"
        )
    return current


# ---------------------------------------------------------------------------
# Coordinator
# ---------------------------------------------------------------------------


class BundleVerifier:
    """
    Runs every verification check over a bundle.

    Execution order:
        1. Document integrity (optional expected hash, size)
        2. Per-signer record and signature checks
        3. Required fields
        4. Merkle root and timestamp proof
    """

    def __init__(self, config: Optional[SigningConfig] = None) -> None:
        self._config = config or SigningConfig()

    async def run(
        self,
        bundle: Bundle,
        *,
        expected_document_hash: Optional[Union[bytes, str]] = None,
        anchor: Optional[TimestampAnchor] = None,
    ) -> VerificationReport:
        findings: List[Finding] = []

        # --------------------------------------------------------------
        # 1. Document integrity
        # --------------------------------------------------------------
        document_hash = compute_document_hash(bundle.document.data)
        findings.extend(self._document_checks(bundle, expected_document_hash))

        # --------------------------------------------------------------
        # 2. Signers (every signer, no short-circuit)
        # --------------------------------------------------------------
        signer_results: List[SignerVerification] = []
        for signer in bundle.signers:
            result, signer_findings = self._check_signer(bundle, signer, document_hash)
            signer_results.append(result)
            findings.extend(signer_findings)

        # --------------------------------------------------------------
        # 3. Required fields
        # --------------------------------------------------------------
        findings.extend(self._field_checks(bundle))

        # --------------------------------------------------------------
        # 4. Commitment / timestamp
        # --------------------------------------------------------------
        commitment = build_commitment(bundle)
        findings.extend(await self._commitment_checks(bundle, commitment.root, anchor))

        completed = bundle.completed_document
        report = VerificationReport(
            bundle_status=bundle.status,
            document_name=bundle.document.name,
            document_hash=bytes_to_hex(document_hash),
            completed_document_hash=(
                bytes_to_hex(sha256(completed.data)) if completed else None
            ),
            merkle_root=commitment.root,
            recorded_merkle_root=recorded_root(bundle),
            signer_results=signer_results,
            findings=findings,
        )

        logger.info(
            "bundle_verified",
            extra={
                "report_id": report.report_id,
                "passed": report.passed,
                "findings_count": len(findings),
            },
        )
        return report

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    @staticmethod
    def _document_checks(
        bundle: Bundle,
        expected_document_hash: Optional[Union[bytes, str]],
    ) -> List[Finding]:
        findings: List[Finding] = []

        if expected_document_hash is not None:
            try:
                ensure_document_hash(bundle, expected_document_hash)
            except (IntegrityError, InputError) as exc:
                findings.append(
                    Finding(
                        finding_id="DOC-CRIT-001",
                        check=VerificationCheck.DOCUMENT_INTEGRITY,
                        severity=Severity.CRITICAL,
                        title="Document hash mismatch",
                        description=(
                            "The original document no longer hashes to the "
                            f"recorded value: {exc}"
                        ),
                    )
                )

        if bundle.document.size != len(bundle.document.data):
            findings.append(
                Finding(
                    finding_id="DOC-MAJ-002",
                    check=VerificationCheck.DOCUMENT_INTEGRITY,
                    severity=Severity.MAJOR,
                    title="Document size mismatch",
                    description=(
                        f"Declared size {bundle.document.size} differs from "
                        f"payload length {len(bundle.document.data)}."
                    ),
                )
            )

        if (
            bundle.completed_document is not None
            and bundle.status is not BundleStatus.COMPLETED
        ):
            findings.append(
                Finding(
                    finding_id="DOC-MAJ-003",
                    check=VerificationCheck.COMPLETED_DOCUMENT,
                    severity=Severity.MAJOR,
                    title="Completed document present before completion",
                    description=(
                        "A completed document is attached although not every "
                        "signer has signed."
                    ),
                )
            )

        return findings

    @staticmethod
    def _check_signer(
        bundle: Bundle,
        signer: Signer,
        document_hash: bytes,
    ) -> Tuple[SignerVerification, List[Finding]]:
        findings: List[Finding] = []
        valid: Optional[bool] = None

        if not signer.signed:
            findings.append(
                Finding(
                    finding_id="SIG-INFO-005",
                    check=VerificationCheck.SIGNER_STATE,
                    severity=Severity.INFO,
                    signer_id=signer.id,
                    title="Signer has not signed",
                    description=f"{signer.name} <{signer.email}> has not signed yet.",
                )
            )
        else:
            try:
                signer_material(signer)
            except InvalidSignatureError as exc:
                findings.append(
                    Finding(
                        finding_id="SIG-CRIT-002",
                        check=VerificationCheck.SIGNER_RECORD,
                        severity=Severity.CRITICAL,
                        signer_id=signer.id,
                        title="Signer record incomplete",
                        description=str(exc),
                    )
                )
            except InputError as exc:
                findings.append(_format_finding(signer, exc))
            else:
                try:
                    verify_signer(bundle, signer.id, document_hash=document_hash)
                    valid = True
                except InvalidSignatureError:
                    valid = False
                    findings.append(
                        Finding(
                            finding_id="SIG-CRIT-001",
                            check=VerificationCheck.SIGNATURE_VALIDITY,
                            severity=Severity.CRITICAL,
                            signer_id=signer.id,
                            title="Invalid signature",
                            description=(
                                f"The signature recorded for {signer.email} does "
                                "not verify against the current document and "
                                "signer record. The document or the record was "
                                "altered, or the signature was made with other "
                                "credentials."
                            ),
                        )
                    )

        result = SignerVerification(
            signer_id=signer.id,
            name=signer.name,
            email=signer.email,
            signed=signer.signed,
            signed_at=signer.signed_at,
            public_key=signer.public_key,
            signature_valid=valid,
            leaf_hash=bytes_to_hex(hash_signer(signer)),
        )
        return result, findings

    @staticmethod
    def _field_checks(bundle: Bundle) -> List[Finding]:
        findings: List[Finding] = []
        signed_ids = {s.id for s in bundle.signers if s.signed}

        for field in bundle.fields:
            if field.required and field.value is None and field.signer_id in signed_ids:
                findings.append(
                    Finding(
                        finding_id="FLD-CRIT-001",
                        check=VerificationCheck.REQUIRED_FIELDS,
                        severity=Severity.CRITICAL,
                        signer_id=field.signer_id,
                        title="Required field unfilled after signing",
                        description=(
                            f"Required {field.type.value} field {field.id} is "
                            "empty although its signer has signed."
                        ),
                    )
                )

        return findings

    async def _commitment_checks(
        self,
        bundle: Bundle,
        current_root: str,
        anchor: Optional[TimestampAnchor],
    ) -> List[Finding]:
        findings: List[Finding] = []
        proof = bundle.timestamp_proof

        if proof is None:
            if (
                self._config.REQUIRE_TIMESTAMP_PROOF
                and bundle.status is BundleStatus.COMPLETED
            ):
                findings.append(
                    Finding(
                        finding_id="TSA-CRIT-003",
                        check=VerificationCheck.TIMESTAMP_PROOF,
                        severity=Severity.CRITICAL,
                        title="Timestamp proof missing",
                        description="The completed bundle carries no timestamp proof.",
                    )
                )
            return findings

        try:
            ensure_recorded_root(bundle)
        except IntegrityError as exc:
            findings.append(
                Finding(
                    finding_id="MRK-CRIT-001",
                    check=VerificationCheck.MERKLE_ROOT,
                    severity=Severity.CRITICAL,
                    title="Merkle root mismatch",
                    description=str(exc),
                    metadata={"recomputed_root": current_root},
                )
            )
            return findings

        if anchor is None:
            return findings

        anchored: Any = proof.get("proof")
        try:
            ok = await anchor.verify(current_root, anchored)
        except Exception as exc:
            logger.warning(
                "timestamp_anchor_unavailable",
                extra={"error_type": type(exc).__name__},
            )
            findings.append(
                Finding(
                    finding_id="TSA-MAJ-002",
                    check=VerificationCheck.TIMESTAMP_PROOF,
                    severity=Severity.MAJOR,
                    title="Timestamp proof could not be checked",
                    description=f"The timestamp anchor failed: {exc}",
                )
            )
            return findings

        if not ok:
            findings.append(
                Finding(
                    finding_id="TSA-CRIT-001",
                    check=VerificationCheck.TIMESTAMP_PROOF,
                    severity=Severity.CRITICAL,
                    title="Timestamp proof rejected",
                    description=(
                        "The timestamp anchor does not confirm the recorded "
                        "Merkle root."
                    ),
                )
            )

        return findings


def _format_finding(signer: Signer, exc: InputError) -> Finding:
    """Classify a malformed record as a key or signature format problem."""
    try:
        parse_public_key(signer.public_key or "")
    except InputError:
        return Finding(
            finding_id="SIG-CRIT-003",
            check=VerificationCheck.PUBLIC_KEY_FORMAT,
            severity=Severity.CRITICAL,
            signer_id=signer.id,
            title="Malformed public key",
            description=f"Recorded public key is unusable: {exc}",
        )

    return Finding(
        finding_id="SIG-CRIT-004",
        check=VerificationCheck.SIGNATURE_FORMAT,
        severity=Severity.CRITICAL,
        signer_id=signer.id,
        title="Malformed signature",
        description=f"Recorded signature is unusable: {exc}",
    )
