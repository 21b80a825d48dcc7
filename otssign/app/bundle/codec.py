"""
``.ots-sign`` bundle file codec.

Handles creation, loading, and serialization of bundle files. Loading is
fail-fast and atomic: either a fully validated Bundle is returned or a
ValidationError is raised; nothing partially applied ever escapes.
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from otssign.app.crypto.constants import BUNDLE_EXTENSION, BUNDLE_VERSION
from otssign.app.errors import ValidationError
from otssign.app.schemas.bundle import Bundle, CompletedDocument, DocumentPayload
from otssign.app.utils.timestamps import utc_timestamp

logger = logging.getLogger("otssign.codec")


# ------------------------------------------------------------------
# Creation
# ------------------------------------------------------------------


def create_bundle(name: str, raw_bytes: bytes) -> Bundle:
    """Start a new draft bundle around the original document bytes."""
    if not isinstance(raw_bytes, (bytes, bytearray)):
        raise ValidationError("document must be raw bytes")

    now = utc_timestamp()
    return Bundle(
        version=BUNDLE_VERSION,
        created=now,
        modified=now,
        document=DocumentPayload(
            name=name,
            size=len(raw_bytes),
            data=bytes(raw_bytes),
        ),
    )


# ------------------------------------------------------------------
# Loading
# ------------------------------------------------------------------


def load_bundle(content: Union[str, bytes]) -> Bundle:
    """Parse and validate a serialized bundle."""
    try:
        raw = json.loads(content)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError(f"Invalid bundle: not valid JSON ({exc})") from exc

    # Lone surrogates survive json.loads but cannot be hashed or signed
    try:
        json.dumps(raw, ensure_ascii=False).encode("utf-8")
    except UnicodeEncodeError as exc:
        raise ValidationError(f"Invalid bundle: text is not valid UTF-8 ({exc})") from exc

    if not isinstance(raw, dict):
        raise ValidationError("Invalid bundle: top level must be an object")

    if not raw.get("version"):
        raise ValidationError("Invalid bundle: missing version")

    document = raw.get("document")
    if not isinstance(document, dict) or not document.get("data"):
        raise ValidationError("Invalid bundle: missing document")

    try:
        bundle = Bundle.model_validate(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid bundle: {exc}") from exc

    stored_status = raw.get("status")
    if stored_status is not None and stored_status != bundle.status.value:
        logger.warning(
            "bundle_status_recomputed",
            extra={
                "stored_status": stored_status,
                "computed_status": bundle.status.value,
            },
        )

    return bundle


def read_bundle(path: Union[str, Path]) -> Bundle:
    return load_bundle(Path(path).read_bytes())


# ------------------------------------------------------------------
# Serialization
# ------------------------------------------------------------------


def dump_bundle(bundle: Bundle) -> str:
    """Serialize for hand-off. Refreshes ``modified``."""
    touched = bundle.model_copy(update={"modified": utc_timestamp()})
    return json.dumps(touched.to_wire(), ensure_ascii=False, indent=2)


def write_bundle(
    bundle: Bundle,
    path: Optional[Union[str, Path]] = None,
    *,
    directory: Union[str, Path] = ".",
) -> Path:
    target = Path(path) if path else Path(directory) / default_filename(bundle)
    target.write_text(dump_bundle(bundle), encoding="utf-8")

    logger.info(
        "bundle_written",
        extra={"path": str(target), "status": bundle.status.value},
    )
    return target


def default_filename(bundle: Bundle) -> str:
    base = re.sub(r"\.pdf$", "", bundle.document.name, flags=re.IGNORECASE)
    return base + BUNDLE_EXTENSION


def detect_file_type(filename: str, content_type: Optional[str] = None) -> str:
    """'pdf' | 'bundle' | 'unknown'"""
    if filename.endswith(".pdf") or content_type == "application/pdf":
        return "pdf"
    if filename.endswith(BUNDLE_EXTENSION) or content_type == "application/json":
        return "bundle"
    return "unknown"


# ------------------------------------------------------------------
# Document payloads
# ------------------------------------------------------------------


def document_bytes(bundle: Bundle) -> bytes:
    return bundle.document.data


def set_completed_document(bundle: Bundle, raw_bytes: bytes) -> Bundle:
    return bundle.model_copy(
        update={
            "completed_document": CompletedDocument(
                data=bytes(raw_bytes),
                completed_at=utc_timestamp(),
            )
        }
    )
