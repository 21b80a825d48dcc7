"""
FastAPI entrypoint for bundle verification.

This module exposes the verification side of the signing protocol over
HTTP. It accepts a serialized ``.ots-sign`` bundle, re-checks every
signer against the original document bytes, and returns a structured
VerificationReport.

The service is stateless. Nothing uploaded is stored, and no credentials
ever cross this interface: signing happens client-side in a
SigningSession, verification needs only public data.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.responses import JSONResponse
from starlette.responses import Response

from otssign.app.bundle.codec import load_bundle
from otssign.app.config import SigningConfig
from otssign.app.coordinator.verifier import BundleVerifier
from otssign.app.crypto.merkle import BundleCommitment, build_commitment
from otssign.app.errors import ValidationError
from otssign.app.schemas.bundle import Bundle
from otssign.app.schemas.verification_report import VerificationReport

logger = logging.getLogger("otssign.api")


# ---------------------------------------------------------------------------
# Presentation helpers (presentation-only)
# ---------------------------------------------------------------------------

def pretty_json(data: Any) -> str:
    """
    Pretty-print JSON for human-readable output.

    PRESENTATION ONLY: never hashed, never signed.
    """
    return json.dumps(
        data,
        ensure_ascii=False,
        allow_nan=False,
        indent=2,
        separators=(", ", ": "),
    )


class PrettyJSONResponse(Response):
    media_type = "application/json"

    def render(self, content: Any) -> bytes:
        return pretty_json(content).encode("utf-8")


# ---------------------------------------------------------------------------
# Application setup
# ---------------------------------------------------------------------------

app = FastAPI(
    title="OTS Sign Verifier",
    description="Verification service for .ots-sign signing bundles",
    version="1.0.0",
)


# ---------------------------------------------------------------------------
# Startup / Shutdown
# ---------------------------------------------------------------------------

@app.on_event("startup")
def startup_event() -> None:
    """
    Configuration is loaded once and treated as immutable for the
    lifetime of the process.
    """
    config = SigningConfig.from_env()
    config.configure_logging()

    app.state.config = config
    app.state.verifier = BundleVerifier(config)


# ---------------------------------------------------------------------------
# Upload handling
# ---------------------------------------------------------------------------

async def _read_bundle_upload(upload: UploadFile) -> Bundle:
    try:
        content = await upload.read()
    except Exception as exc:
        raise HTTPException(
            status_code=400,
            detail="Failed to read uploaded bundle",
        ) from exc

    if not content:
        raise HTTPException(
            status_code=400,
            detail="Uploaded bundle is empty",
        )

    # ------------------------------------------------------------------
    # Hard resource safety limits (NOT trust decisions)
    # ------------------------------------------------------------------
    config: SigningConfig = app.state.config

    if len(content) > config.max_bundle_size_bytes:
        raise HTTPException(
            status_code=413,
            detail=(
                f"Bundle exceeds maximum allowed size of "
                f"{config.MAX_BUNDLE_SIZE_MB} MB"
            ),
        )

    try:
        return load_bundle(content)
    except ValidationError as exc:
        logger.info("bundle_rejected", extra={"reason": str(exc)})
        raise HTTPException(status_code=422, detail=str(exc)) from exc


# ---------------------------------------------------------------------------
# API Routes
# ---------------------------------------------------------------------------

@app.post(
    "/verify",
    response_model=VerificationReport,
    response_class=PrettyJSONResponse,
    summary="Verify every signature in a signing bundle",
)
async def verify_bundle(
    bundle: UploadFile = File(..., description="Serialized .ots-sign bundle"),
    expected_document_hash: Optional[str] = Form(
        None,
        description="Hex SHA-256 the original document must still hash to",
    ),
) -> VerificationReport:
    loaded = await _read_bundle_upload(bundle)
    verifier: BundleVerifier = app.state.verifier

    return await verifier.run(
        loaded,
        expected_document_hash=expected_document_hash or None,
    )


@app.post(
    "/commitment",
    response_model=BundleCommitment,
    response_class=PrettyJSONResponse,
    summary="Compute the Merkle commitment of a signing bundle",
)
async def bundle_commitment(
    bundle: UploadFile = File(..., description="Serialized .ots-sign bundle"),
) -> BundleCommitment:
    loaded = await _read_bundle_upload(bundle)
    return build_commitment(loaded)


# ---------------------------------------------------------------------------
# Health Check
# ---------------------------------------------------------------------------

@app.get(
    "/health",
    summary="Service health check",
)
def health_check() -> JSONResponse:
    return JSONResponse(
        content={
            "status": "ok",
            "service": "otssign",
        }
    )
