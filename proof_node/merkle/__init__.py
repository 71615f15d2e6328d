"""Merkle tree tamper evidence for document batches."""
from proof_node.merkle.hasher import (
    compute_content_hash,
    compute_file_hash,
    is_valid_hash,
    require_hash,
    sha256_concat,
)
from proof_node.merkle.signing import HmacSigner
from proof_node.merkle.tree import (
    MerkleTree,
    build_tree,
    calculate_root,
    compute_root,
    generate_proof,
    tree_height,
    verify_proof,
)

__all__ = [
    "HmacSigner",
    "MerkleTree",
    "build_tree",
    "calculate_root",
    "compute_content_hash",
    "compute_file_hash",
    "compute_root",
    "generate_proof",
    "is_valid_hash",
    "require_hash",
    "sha256_concat",
    "tree_height",
    "verify_proof",
]
