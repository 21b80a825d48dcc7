from __future__ import annotations

from typing import Any, Dict, Optional
from enum import Enum
from datetime import datetime, timezone
from uuid import uuid4, UUID

from pydantic import BaseModel, Field, ConfigDict


# ----------------------------------------------------------------------
# Event Types (Finite and Versioned)
# ----------------------------------------------------------------------
class SigningEventType(str, Enum):
    """
    Progression events emitted while a bundle is signed and committed.

    NOTE:
    This enum is finite and versioned.
    New entries must preserve observational semantics.
    """

    # ------------------------------------------------------------------
    # Sign operation
    # ------------------------------------------------------------------
    SIGN_STARTED = "sign_started"
    SIGN_COMPLETED = "sign_completed"
    SIGN_FAILED = "sign_failed"

    # ------------------------------------------------------------------
    # Bundle lifecycle
    # ------------------------------------------------------------------
    BUNDLE_COMPLETED = "bundle_completed"
    BUNDLE_FINALIZED = "bundle_finalized"

    # ------------------------------------------------------------------
    # Commitment / anchoring
    # ------------------------------------------------------------------
    COMMITMENT_BUILT = "commitment_built"
    TIMESTAMP_ANCHORED = "timestamp_anchored"


# ----------------------------------------------------------------------
# Event Model
# ----------------------------------------------------------------------
class SigningEvent(BaseModel):
    """
    An immutable observation of a state transition within a session.

    Events are:
    - strictly observational
    - transport-agnostic
    - never carriers of secret material
    """

    event_id: UUID = Field(default_factory=uuid4)
    session_id: str = Field(..., description="The signing session identifier")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    event_type: SigningEventType

    # Optional contextual metadata (signer_id, status, root, etc.)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
    )
