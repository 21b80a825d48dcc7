"""
Timestamp helpers.

Signing timestamps are part of the signed message, so the exact text
matters: UTC, millisecond precision, trailing ``Z``
(e.g. ``2025-03-01T09:30:00.000Z``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_timestamp(moment: Optional[datetime] = None) -> str:
    """Render an ISO-8601 UTC timestamp with millisecond precision."""
    moment = moment or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    rendered = moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    return rendered.replace("+00:00", "Z")


def signing_date(timestamp: str) -> str:
    """Calendar date (YYYY-MM-DD) of a signing timestamp."""
    return timestamp.split("T", 1)[0]
