from proof_node.db.tables.documents import DocumentRow
from proof_node.db.tables.merkle import BatchVerificationLogRow, MerkleBatchRow, MerkleLeafRow
from proof_node.db.tables.proofs import ProofVerificationLogRow, TimestampProofRow

__all__ = [
    "DocumentRow",
    "MerkleBatchRow", "MerkleLeafRow", "BatchVerificationLogRow",
    "TimestampProofRow", "ProofVerificationLogRow",
]
