"""
VerificationReport schema.

The report produced when a bundle is re-opened and checked. It captures
the per-signer signature results, bundle-level integrity results, and
every finding raised along the way. Verification never stops at the
first failure, so one report always covers every signer and every check.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field

from otssign.app.schemas.bundle import BundleStatus
from otssign.app.schemas.findings import Severity, VerificationFinding


class SignerVerification(BaseModel):
    """Outcome of signature verification for one signer."""

    signer_id: str
    name: str
    email: str
    signed: bool
    signed_at: Optional[str] = None
    public_key: Optional[str] = None

    signature_valid: Optional[bool] = Field(
        None,
        description="None when the signer has not signed or the record is unusable",
    )

    leaf_hash: str = Field(
        ...,
        description="Merkle leaf hash of this signer record",
    )

    model_config = ConfigDict(frozen=True)


class VerificationReport(BaseModel):
    """Master verification report for one bundle."""

    report_id: str = Field(default_factory=lambda: str(uuid4()))
    generated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    bundle_status: BundleStatus
    document_name: str
    document_hash: str
    completed_document_hash: Optional[str] = None
    merkle_root: str
    recorded_merkle_root: Optional[str] = None

    signer_results: List[SignerVerification] = Field(default_factory=list)
    findings: List[VerificationFinding] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> bool:
        return not any(f.severity is Severity.CRITICAL for f in self.findings)

    def findings_for(self, signer_id: str) -> List[VerificationFinding]:
        return [f for f in self.findings if f.signer_id == signer_id]

    model_config = ConfigDict(frozen=True)
