"""Stateless recomputation of Merkle and timestamp proofs."""
from __future__ import annotations

import logging
from typing import Protocol, Sequence

from proof_node.entities.proof import (
    LeafRecord,
    MerkleBatch,
    ProofPathElement,
    ProofType,
    TimestampProof,
    VerificationResult,
    VerificationStatus,
)
from proof_node.merkle.signing import HmacSigner
from proof_node.merkle.tree import compute_root, verify_proof
from proof_node.services.hash_chain import HashChain

logger = logging.getLogger(__name__)


class LeafLookup(Protocol):
    def get(self, batch_id: str) -> MerkleBatch | None: ...
    def get_latest_leaf(self, document_id: str) -> LeafRecord | None: ...


class ProofLookup(Protocol):
    def get_latest(self, document_id: str) -> TimestampProof | None: ...
    def get_chain(self, document_id: str) -> list[TimestampProof]: ...


class ProofVerifier:
    """Checks a presented hash against the proof of record.

    Only reads. A mismatch is a ``TAMPERED`` result, never an exception.
    When a signer is given, HMAC signatures on proofs and batches are
    checked as well.
    """

    def __init__(
        self,
        batch_repository: LeafLookup | None = None,
        proof_repository: ProofLookup | None = None,
        signer: HmacSigner | None = None,
    ):
        self.batch_repository = batch_repository
        self.proof_repository = proof_repository
        self.signer = signer

    @staticmethod
    def verify_merkle_proof(
        leaf_hash: str, proof_path: Sequence[ProofPathElement], claimed_root: str,
    ) -> bool:
        return verify_proof(leaf_hash, proof_path, claimed_root)

    def verify_merkle_leaf(
        self, leaf: LeafRecord, batch: MerkleBatch, current_hash: str,
    ) -> VerificationResult:
        details = {
            "batch_id": batch.id,
            "batch_timestamp": batch.batch_timestamp.isoformat(),
            "root_hash": batch.root_hash,
            "leaf_count": batch.leaf_count,
            "leaf_index": leaf.leaf_index,
            "leaf_hash": leaf.leaf_hash,
            "current_hash": current_hash,
        }
        if leaf.leaf_hash != current_hash:
            return VerificationResult(
                status=VerificationStatus.TAMPERED,
                message="Document has been modified since batch proof",
                proof_type=ProofType.MERKLE,
                details=details,
            )

        computed_root = compute_root(leaf.leaf_hash, leaf.proof_path)
        details["computed_root"] = computed_root
        if computed_root is None or computed_root != batch.root_hash:
            return VerificationResult(
                status=VerificationStatus.TAMPERED,
                message="Merkle proof verification failed",
                proof_type=ProofType.MERKLE,
                details=details,
            )

        if self.signer is not None and not self.signer.verify_batch(batch):
            return VerificationResult(
                status=VerificationStatus.TAMPERED,
                message="Merkle batch signature is invalid",
                proof_type=ProofType.MERKLE,
                details=details,
            )

        return VerificationResult(
            status=VerificationStatus.VERIFIED,
            message="Document integrity verified via Merkle proof",
            proof_type=ProofType.MERKLE,
            details=details,
        )

    def verify_timestamp_proof(
        self,
        proof: TimestampProof,
        current_content_hash: str,
        chain: Sequence[TimestampProof] | None = None,
    ) -> VerificationResult:
        """Valid iff the content is unchanged and, when chained, the chain holds.

        ``chain`` is the document's proof chain oldest first; it must end
        with ``proof`` for a chained proof to be accepted. When omitted it
        is loaded from the proof repository, if there is one.
        """
        has_chain = proof.previous_proof_hash is not None
        if has_chain and chain is None and self.proof_repository is not None:
            chain = self.proof_repository.get_chain(proof.document_id)
        details = {
            "proof_id": proof.id,
            "proof_hash": proof.proof_hash,
            "current_hash": current_content_hash,
            "proof_timestamp": proof.proof_timestamp.isoformat(),
            "hmac_signature": proof.hmac_signature,
            "has_chain": has_chain,
        }

        if current_content_hash != proof.proof_hash:
            return VerificationResult(
                status=VerificationStatus.TAMPERED,
                message="Document has been modified since timestamp",
                proof_type=ProofType.TIMESTAMP,
                details=details,
            )

        if has_chain:
            chain_ok = bool(chain) and chain[-1].id == proof.id and HashChain.verify_chain(chain)
            details["chain_length"] = len(chain or [])
            if not chain_ok:
                return VerificationResult(
                    status=VerificationStatus.TAMPERED,
                    message="Timestamp proof chain is broken",
                    proof_type=ProofType.TIMESTAMP,
                    details=details,
                )

        if self.signer is not None and not self.signer.verify_timestamp_proof(proof):
            return VerificationResult(
                status=VerificationStatus.TAMPERED,
                message="Timestamp proof signature is invalid",
                proof_type=ProofType.TIMESTAMP,
                details=details,
            )

        return VerificationResult(
            status=VerificationStatus.VERIFIED,
            message="Document integrity verified",
            proof_type=ProofType.TIMESTAMP,
            details=details,
        )

    def verify_document_integrity(self, document_id: str, current_hash: str) -> VerificationResult:
        """Merkle leaf of record first, then the timestamp chain, else NO_PROOF."""
        if self.batch_repository is not None:
            leaf = self.batch_repository.get_latest_leaf(document_id)
            if leaf is not None and leaf.batch_id is not None:
                batch = self.batch_repository.get(leaf.batch_id)
                if batch is not None:
                    return self.verify_merkle_leaf(leaf, batch, current_hash)
                logger.warning("Leaf of document %s points at missing batch %s", document_id, leaf.batch_id)

        if self.proof_repository is not None:
            proof = self.proof_repository.get_latest(document_id)
            if proof is not None:
                chain = self.proof_repository.get_chain(document_id)
                return self.verify_timestamp_proof(proof, current_hash, chain)

        return VerificationResult(
            status=VerificationStatus.NO_PROOF,
            message="No proof found for document",
            details={"document_id": document_id, "current_hash": current_hash},
        )
