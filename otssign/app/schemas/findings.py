"""
Standardized verification finding schema.

A finding records one failed (or notable) check during bundle
verification. Findings are:

- immutable once produced
- attributable to a single check and, where relevant, a single signer
- severity-graded

All findings in a VerificationReport MUST conform to this schema.
"""

from enum import Enum
from typing import Optional, Dict

from pydantic import BaseModel, Field
from pydantic import ConfigDict


# ---------------------------------------------------------------------------
# Enumerations (FROZEN CONTRACTS)
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """
    Severity level of a finding.

    CRITICAL findings make verification fail.
    Ordering is intentional and MUST remain stable.
    """

    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"
    INFO = "info"


class VerificationCheck(str, Enum):
    """Which check produced the finding."""

    DOCUMENT_INTEGRITY = "document_integrity"
    COMPLETED_DOCUMENT = "completed_document"
    SIGNER_STATE = "signer_state"
    SIGNER_RECORD = "signer_record"
    PUBLIC_KEY_FORMAT = "public_key_format"
    SIGNATURE_FORMAT = "signature_format"
    SIGNATURE_VALIDITY = "signature_validity"
    REQUIRED_FIELDS = "required_fields"
    MERKLE_ROOT = "merkle_root"
    TIMESTAMP_PROOF = "timestamp_proof"


# ---------------------------------------------------------------------------
# Canonical Finding Object (PUBLIC, FROZEN)
# ---------------------------------------------------------------------------


class VerificationFinding(BaseModel):
    """
    Canonical verification finding.

    Findings are descriptive. They tell a human verifier which signer and
    which check failed so they can act on it.
    """

    finding_id: str = Field(
        ...,
        description="Stable identifier for the finding (e.g. 'SIG-CRIT-001')",
    )

    check: VerificationCheck = Field(
        ...,
        description="Check that produced the finding",
    )

    severity: Severity = Field(
        ...,
        description="Severity level of the finding",
    )

    signer_id: Optional[str] = Field(
        None,
        description="Signer the finding concerns; None for bundle-level findings",
    )

    title: str = Field(
        ...,
        description="Short human-readable summary of the finding",
    )

    description: str = Field(
        ...,
        description="Clear explanation of what failed",
    )

    metadata: Optional[Dict] = Field(
        None,
        description="Optional structured metadata for tooling or reviewers",
    )

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
