"""Binary Merkle tree construction and proof generation."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from proof_node.entities.proof import ProofPathElement, ProofPosition
from proof_node.errors import EmptyBatchError
from proof_node.merkle.hasher import sha256_concat


@dataclass
class MerkleTree:
    """A sealed tree: every level from the leaves up to the root."""
    levels: list[list[str]]
    proof_paths: list[list[ProofPathElement]] = field(default_factory=list)

    @property
    def root_hash(self) -> str:
        return self.levels[-1][0]

    @property
    def height(self) -> int:
        return len(self.levels) - 1

    @property
    def leaf_count(self) -> int:
        return len(self.levels[0])


def tree_height(leaf_count: int) -> int:
    """ceil(log2(leaf_count)), or 0 for a single leaf."""
    if leaf_count <= 1:
        return 0
    return (leaf_count - 1).bit_length()


def build_levels(leaf_hashes: Sequence[str]) -> list[list[str]]:
    """Hash adjacent pairs level by level until one node is left.

    If a level has an odd number of nodes, the last node is paired with
    itself rather than promoted.
    """
    if not leaf_hashes:
        raise EmptyBatchError("Cannot build a Merkle tree with no leaves")

    levels: list[list[str]] = [list(leaf_hashes)]
    current = levels[0]
    while len(current) > 1:
        next_level: list[str] = []
        for i in range(0, len(current), 2):
            left = current[i]
            right = current[i + 1] if i + 1 < len(current) else left
            next_level.append(sha256_concat(left, right))
        levels.append(next_level)
        current = next_level
    return levels


def generate_proof(levels: list[list[str]], leaf_index: int) -> list[ProofPathElement]:
    """Sibling hashes from leaf to root for the leaf at ``leaf_index``."""
    if not 0 <= leaf_index < len(levels[0]):
        raise IndexError(f"leaf index {leaf_index} out of range for {len(levels[0])} leaves")

    path: list[ProofPathElement] = []
    idx = leaf_index
    for level in levels[:-1]:
        if idx % 2 == 0:
            # Last node of an odd level is its own sibling
            sibling = level[idx + 1] if idx + 1 < len(level) else level[idx]
            path.append(ProofPathElement(hash=sibling, position=ProofPosition.RIGHT))
        else:
            path.append(ProofPathElement(hash=level[idx - 1], position=ProofPosition.LEFT))
        idx //= 2
    return path


def build_tree(leaf_hashes: Sequence[str]) -> MerkleTree:
    levels = build_levels(leaf_hashes)
    paths = [generate_proof(levels, i) for i in range(len(levels[0]))]
    return MerkleTree(levels=levels, proof_paths=paths)


def calculate_root(leaf_hashes: Sequence[str]) -> str:
    return build_levels(leaf_hashes)[-1][0]


def compute_root(leaf_hash: str, proof_path: Sequence[ProofPathElement]) -> str | None:
    """Fold the proof path over the leaf hash.

    Returns None if a path element carries an unknown position.
    """
    current = leaf_hash
    for element in proof_path:
        if element.position == ProofPosition.LEFT:
            current = sha256_concat(element.hash, current)
        elif element.position == ProofPosition.RIGHT:
            current = sha256_concat(current, element.hash)
        else:
            return None
    return current


def verify_proof(leaf_hash: str, proof_path: Sequence[ProofPathElement], claimed_root: str) -> bool:
    """Verify a Merkle inclusion proof."""
    computed = compute_root(leaf_hash, proof_path)
    return computed is not None and computed == claimed_root
