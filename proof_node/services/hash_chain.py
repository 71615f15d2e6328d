"""Per-document timestamp proofs linked into a backward hash chain."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Protocol, Sequence

from proof_node.db.persistence import with_retries
from proof_node.entities.proof import TimestampProof
from proof_node.errors import ChainLinkError
from proof_node.merkle.hasher import compute_content_hash, require_hash
from proof_node.merkle.signing import HmacSigner

logger = logging.getLogger(__name__)


class TimestampProofRepository(Protocol):
    def save(self, proof: TimestampProof) -> None: ...
    def get_latest(self, document_id: str) -> TimestampProof | None: ...
    def get_chain(self, document_id: str) -> list[TimestampProof]: ...


class HashChain:
    """Creates timestamp proofs and links each one to the document's previous proof.

    The chain is append-only: proofs are never updated or removed.
    """

    def __init__(
        self,
        proof_repository: TimestampProofRepository,
        signer: HmacSigner,
        persistence_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
    ):
        self.proof_repository = proof_repository
        self.signer = signer
        self.persistence_retries = persistence_retries
        self.retry_backoff_seconds = retry_backoff_seconds

    @staticmethod
    def compute_content_hash(data: bytes) -> str:
        return compute_content_hash(data)

    def append_proof(
        self,
        document_id: str,
        content_hash: str,
        previous_proof_hash: str | None = None,
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> TimestampProof:
        """Sign and persist a new proof for ``document_id``.

        The latest proof of record is always linked in. A caller-supplied
        ``previous_proof_hash`` must match it, otherwise ``ChainLinkError``.
        """
        require_hash(content_hash, "content_hash")
        now = now or datetime.now(timezone.utc)

        latest = self.proof_repository.get_latest(document_id)
        expected_previous = latest.proof_hash if latest else None
        if previous_proof_hash is not None and previous_proof_hash != expected_previous:
            raise ChainLinkError(
                f"previous_proof_hash {previous_proof_hash[:16]} does not match the latest proof "
                f"of document {document_id} ({(expected_previous or 'none')[:16]})"
            )
        # Chain order is timestamp order, so timestamps strictly increase per document
        if latest is not None and now <= latest.proof_timestamp:
            now = latest.proof_timestamp + timedelta(microseconds=1)

        proof = TimestampProof(
            id=str(uuid.uuid4()),
            document_id=document_id,
            proof_hash=content_hash,
            proof_timestamp=now,
            hmac_signature=self.signer.sign_timestamp_proof(
                content_hash, now, document_id, expected_previous,
            ),
            previous_proof_hash=expected_previous,
            metadata=dict(metadata or {}),
            created_at=now,
        )
        with_retries(
            lambda: self.proof_repository.save(proof),
            description=f"timestamp proof insert for document {document_id}",
            retries=self.persistence_retries,
            backoff_seconds=self.retry_backoff_seconds,
        )
        logger.info(
            "Timestamp proof %s for document %s: hash=%s chained=%s",
            proof.id, document_id, content_hash[:16], expected_previous is not None,
        )
        return proof

    def get_chain(self, document_id: str) -> list[TimestampProof]:
        return self.proof_repository.get_chain(document_id)

    @staticmethod
    def verify_chain(proofs: Sequence[TimestampProof]) -> bool:
        """True if every proof links to the one before it (oldest first)."""
        for previous, current in zip(proofs, proofs[1:]):
            if current.previous_proof_hash != previous.proof_hash:
                return False
        return True
