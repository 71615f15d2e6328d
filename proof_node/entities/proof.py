from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Any


BATCH_ACTIVE_WINDOW = timedelta(hours=1)


class ProofPosition(StrEnum):
    LEFT = "left"
    RIGHT = "right"


class ProofType(StrEnum):
    MERKLE = "merkle"
    TIMESTAMP = "timestamp"


class VerificationStatus(StrEnum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    NO_PROOF = "NO_PROOF"


@dataclass(frozen=True)
class ProofPathElement:
    """One step of a Merkle proof path: the sibling hash and which side it sits on."""
    hash: str
    position: ProofPosition

    def to_dict(self) -> dict[str, str]:
        return {"hash": self.hash, "position": str(self.position)}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ProofPathElement":
        return cls(hash=payload["hash"], position=ProofPosition(payload["position"]))


def proof_path_to_json(path: list[ProofPathElement]) -> list[dict[str, str]]:
    return [element.to_dict() for element in path]


def proof_path_from_json(payload: list[dict[str, Any]] | None) -> list[ProofPathElement]:
    return [ProofPathElement.from_dict(item) for item in payload or []]


@dataclass
class DocumentRecord:
    """A stored document as far as the proof engine cares: its id and content hash."""
    id: str
    file_name: str
    file_hash: str | None = None
    file_size: int | None = None
    uploaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class LeafRecord:
    """A document's leaf inside a sealed Merkle batch."""
    document_id: str
    leaf_hash: str
    leaf_index: int
    proof_path: list[ProofPathElement] = field(default_factory=list)
    batch_id: str | None = None
    timestamp_proof_id: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class MerkleBatch:
    id: str
    batch_timestamp: datetime
    root_hash: str
    leaf_count: int
    tree_height: int
    batch_signature: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def status(self, now: datetime | None = None) -> str:
        """'active' during the first hour after sealing, 'complete' afterwards."""
        now = now or datetime.now(timezone.utc)
        if now - self.batch_timestamp < BATCH_ACTIVE_WINDOW:
            return "active"
        return "complete"


@dataclass
class TimestampProof:
    id: str
    document_id: str
    proof_hash: str
    proof_timestamp: datetime
    hmac_signature: str
    previous_proof_hash: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status(self) -> str:
        return "chained" if self.previous_proof_hash else "verified"


@dataclass
class VerificationResult:
    status: VerificationStatus
    message: str
    proof_type: ProofType | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return self.status == VerificationStatus.VERIFIED

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "valid": self.valid,
            "status": str(self.status),
            "message": self.message,
            "proof_type": str(self.proof_type) if self.proof_type else None,
        }
        payload.update(self.details)
        return payload


@dataclass
class BatchStatistics:
    total_batches: int = 0
    total_documents_batched: int = 0
    average_batch_size: float = 0.0
    latest_batch_timestamp: datetime | None = None


@dataclass
class BatchDocument:
    """A leaf joined with its document's file name, for batch transparency views."""
    document_id: str
    file_name: str | None
    leaf_hash: str
    leaf_index: int
    proof_path: list[ProofPathElement] = field(default_factory=list)


@dataclass
class DocumentProofInfo:
    document_id: str
    has_timestamp_proof: bool = False
    has_merkle_proof: bool = False
    timestamp_proof_id: str | None = None
    timestamp_proof_date: datetime | None = None
    merkle_batch_id: str | None = None
    merkle_batch_date: datetime | None = None
    leaf_index: int | None = None


@dataclass
class VerificationLog:
    id: str
    timestamp_proof_id: str
    verified_at: datetime
    verification_result: bool
    verification_method: str
    verified_by: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
