"""
External collaborator contracts.

The core never talks to a network or renders PDFs itself. It consumes:

- a TimestampAnchor, treated as an opaque oracle over a Merkle root
- a DocumentRenderer, which embeds captured field values into the
  original document and returns the completed document bytes

Only the contracts live here. Implementations are wired by the caller.
"""

from __future__ import annotations

from typing import Any, List, Protocol

from otssign.app.schemas.bundle import Signer, SigningField


class TimestampAnchor(Protocol):
    """Anchors a root hash in time and checks such anchors later."""

    async def submit(self, root_hash: str) -> Any:
        """Return a JSON-serializable proof for ``root_hash`` (hex)."""
        ...

    async def verify(self, root_hash: str, proof: Any) -> bool:
        ...


class DocumentRenderer(Protocol):
    """Embeds filled fields into the original document."""

    async def render(
        self,
        document: bytes,
        fields: List[SigningField],
        signers: List[Signer],
    ) -> bytes:
        ...
