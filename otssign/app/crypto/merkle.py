"""
Merkle commitment over a bundle.

Produces one fixed-size root for external timestamp anchoring,
independent of signer count, with a per-leaf inclusion proof so any
single signer record can be checked against the root without the
others.

Construction:
- Leaves: document hash first, then one hash per signer in bundle order.
- Layers are built by hashing adjacent pairs; an odd trailing node is
  promoted unchanged.
- Pairing is CONTENT-ORDERED: the two inputs are concatenated smaller-hex
  first before hashing, so the parent does not depend on tree position.

Because pairing is content-ordered, the ``position`` hint carried in a
proof is not needed to recompute the root. It is kept for wire
compatibility and can be cross-checked when the leaf index is known.

A proof is only valid against the root of the exact, frozen leaf set it
was issued for. Adding or removing a signer requires a full rebuild and
invalidates every earlier proof.
"""

from __future__ import annotations

from typing import Dict, List, Literal, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field

from otssign.app.crypto.constants import DIGEST_LENGTH
from otssign.app.crypto.signatures import bytes_to_hex, hex_to_bytes
from otssign.app.errors import InputError
from otssign.app.schemas.bundle import Bundle, Signer
from otssign.app.utils.hashing import canonical_json, compute_document_hash, sha256


HashLike = Union[bytes, str]

DOCUMENT_LEAF = "document"


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ProofStep(BaseModel):
    """One sibling on the path from a leaf to the root."""

    hash: str = Field(..., description="Sibling hash, lower-case hex")
    position: Literal["left", "right"] = Field(
        ...,
        description="Sibling's tree position (diagnostic only)",
    )

    model_config = ConfigDict(frozen=True)


class LeafProof(BaseModel):
    label: str = Field(..., description="'document' or the signer id")
    index: int
    leaf: str
    proof: List[ProofStep]

    model_config = ConfigDict(frozen=True)


class BundleCommitment(BaseModel):
    """Root, leaves, and proofs for one frozen leaf set."""

    root: str
    leaf_count: int
    leaves: List[str]
    proofs: List[LeafProof]

    def proof_for(self, label: str) -> Optional[LeafProof]:
        return next((p for p in self.proofs if p.label == label), None)

    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Hashing
# ---------------------------------------------------------------------------


def hash_document(raw_bytes: bytes) -> bytes:
    return compute_document_hash(raw_bytes)


def hash_signer(signer: Signer) -> bytes:
    """
    Hash of one signer record.

    Record layout (key order is part of the contract):
        {"email", "publicKey", "signature", "signedAt"}
    """
    return sha256(
        canonical_json(
            {
                "email": signer.email,
                "publicKey": signer.public_key,
                "signature": signer.crypto_signature,
                "signedAt": signer.signed_at,
            }
        )
    )


def hash_nodes(left: bytes, right: bytes) -> bytes:
    """Content-ordered pair hash: smaller hex representation first."""
    if bytes_to_hex(left) < bytes_to_hex(right):
        return sha256(bytes(left) + bytes(right))
    return sha256(bytes(right) + bytes(left))


# ---------------------------------------------------------------------------
# Tree
# ---------------------------------------------------------------------------


class MerkleTree:
    """
    Immutable layered Merkle tree.

    ``layers[0]`` are the leaves; ``layers[-1]`` holds the single root.
    """

    def __init__(self, layers: List[List[bytes]]) -> None:
        self._layers = layers

    @classmethod
    def build(cls, leaves: Sequence[HashLike]) -> "MerkleTree":
        current = [_as_digest(leaf) for leaf in leaves]
        if not current:
            return cls([])

        layers = [current]
        while len(current) > 1:
            parents: List[bytes] = []
            for i in range(0, len(current), 2):
                if i + 1 < len(current):
                    parents.append(hash_nodes(current[i], current[i + 1]))
                else:
                    parents.append(current[i])
            layers.append(parents)
            current = parents

        return cls(layers)

    @property
    def layers(self) -> List[List[bytes]]:
        return [list(layer) for layer in self._layers]

    @property
    def leaves(self) -> List[bytes]:
        return list(self._layers[0]) if self._layers else []

    @property
    def root(self) -> Optional[bytes]:
        return self._layers[-1][0] if self._layers else None

    @property
    def root_hex(self) -> Optional[str]:
        root = self.root
        return bytes_to_hex(root) if root is not None else None

    def proof(self, index: int) -> List[ProofStep]:
        """Sibling path for leaf ``index``, bottom-up."""
        if not self._layers or not 0 <= index < len(self._layers[0]):
            raise IndexError(f"leaf index {index} out of range")

        steps: List[ProofStep] = []
        idx = index
        for layer in self._layers[:-1]:
            is_right = idx % 2 == 1
            sibling = idx - 1 if is_right else idx + 1
            if sibling < len(layer):
                steps.append(
                    ProofStep(
                        hash=bytes_to_hex(layer[sibling]),
                        position="left" if is_right else "right",
                    )
                )
            idx //= 2

        return steps


# ---------------------------------------------------------------------------
# Proof verification
# ---------------------------------------------------------------------------


def expected_positions(index: int, leaf_count: int) -> List[str]:
    """Position hints a correct proof for ``index`` must carry."""
    if not 0 <= index < leaf_count:
        raise IndexError(f"leaf index {index} out of range")

    positions: List[str] = []
    idx, width = index, leaf_count
    while width > 1:
        is_right = idx % 2 == 1
        sibling = idx - 1 if is_right else idx + 1
        if sibling < width:
            positions.append("left" if is_right else "right")
        idx //= 2
        width = (width + 1) // 2

    return positions


def verify_proof(
    leaf: HashLike,
    proof: Sequence[Union[ProofStep, dict]],
    root: HashLike,
    *,
    index: Optional[int] = None,
    leaf_count: Optional[int] = None,
) -> bool:
    """
    Recompute the root from one leaf and its proof.

    Position hints are ignored for the recomputation. When both ``index``
    and ``leaf_count`` are given they are additionally cross-checked.
    """
    try:
        steps = [
            s if isinstance(s, ProofStep) else ProofStep.model_validate(s)
            for s in proof
        ]
        current = _as_digest(leaf)
        expected_root = _as_digest(root)

        for step in steps:
            current = hash_nodes(current, _as_digest(step.hash))
    except (InputError, ValueError):
        return False

    if index is not None and leaf_count is not None:
        try:
            if [s.position for s in steps] != expected_positions(index, leaf_count):
                return False
        except IndexError:
            return False

    return current == expected_root


# ---------------------------------------------------------------------------
# Bundle commitment
# ---------------------------------------------------------------------------


def bundle_leaves(bundle: Bundle) -> List[Tuple[str, bytes]]:
    """(label, leaf hash) in commitment order."""
    leaves = [(DOCUMENT_LEAF, hash_document(bundle.document.data))]
    leaves.extend((s.id, hash_signer(s)) for s in bundle.signers)
    return leaves


def build_commitment(bundle: Bundle) -> BundleCommitment:
    """Rebuild the tree over the bundle's current leaf set."""
    labelled = bundle_leaves(bundle)
    tree = MerkleTree.build([leaf for _, leaf in labelled])

    proofs: Dict[str, LeafProof] = {}
    for index, (label, leaf) in enumerate(labelled):
        proofs[label] = LeafProof(
            label=label,
            index=index,
            leaf=bytes_to_hex(leaf),
            proof=tree.proof(index),
        )

    return BundleCommitment(
        root=tree.root_hex,
        leaf_count=len(labelled),
        leaves=[bytes_to_hex(leaf) for _, leaf in labelled],
        proofs=list(proofs.values()),
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _as_digest(value: HashLike) -> bytes:
    raw = hex_to_bytes(value) if isinstance(value, str) else bytes(value)
    if len(raw) != DIGEST_LENGTH:
        raise InputError(f"hash must be {DIGEST_LENGTH} bytes, got {len(raw)}")
    return raw
