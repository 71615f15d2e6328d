"""Batch lifecycle: pick unbatched documents, seal them under one Merkle root."""
from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol

from proof_node.db.persistence import with_retries
from proof_node.entities.proof import LeafRecord, MerkleBatch
from proof_node.errors import EmptyBatchError
from proof_node.merkle.hasher import require_hash
from proof_node.merkle.signing import HmacSigner
from proof_node.merkle.tree import build_tree

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 100


class DocumentSource(Protocol):
    def fetch_content_hashes(self, document_ids: Iterable[str]) -> dict[str, str]: ...
    def find_pending(self, limit: int = DEFAULT_MAX_BATCH_SIZE) -> list[str]: ...
    def count_pending(self) -> int: ...


class BatchStore(Protocol):
    def save_batch(self, batch: MerkleBatch, leaves: list[LeafRecord]) -> None: ...
    def find_batched_document_ids(self, document_ids: Iterable[str]) -> set[str]: ...


class ProofIndex(Protocol):
    def latest_ids_for(self, document_ids: Iterable[str]) -> dict[str, str]: ...


class BatchCoordinator:
    """Seals documents into immutable Merkle batches.

    - select_pending_documents(): documents that have no leaf yet.
    - create_batch(): hashes -> tree -> batch + leaves, persisted in one commit.
    - create_batch_for_pending_documents(): the two above, as the scheduler runs them.
    """

    def __init__(
        self,
        document_repository: DocumentSource,
        batch_repository: BatchStore,
        signer: HmacSigner,
        proof_repository: ProofIndex | None = None,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        persistence_retries: int = 3,
        retry_backoff_seconds: float = 1.0,
    ):
        self.document_repository = document_repository
        self.batch_repository = batch_repository
        self.signer = signer
        self.proof_repository = proof_repository
        self.max_batch_size = max_batch_size
        self.persistence_retries = persistence_retries
        self.retry_backoff_seconds = retry_backoff_seconds

    def select_pending_documents(self, max_batch_size: int | None = None) -> list[str]:
        return self.document_repository.find_pending(limit=max_batch_size or self.max_batch_size)

    def count_pending_documents(self) -> int:
        return self.document_repository.count_pending()

    def create_batch(
        self,
        document_ids: list[str],
        metadata: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> MerkleBatch:
        if not document_ids:
            raise EmptyBatchError("No documents provided for batch")

        # Keep first occurrence order; leaf order is part of the proof
        ordered_ids = list(dict.fromkeys(document_ids))

        # A document is sealed at most once
        already_batched = self.batch_repository.find_batched_document_ids(ordered_ids)
        if already_batched:
            logger.warning("Skipping %d documents already sealed in a batch", len(already_batched))
            ordered_ids = [doc_id for doc_id in ordered_ids if doc_id not in already_batched]
        if not ordered_ids:
            raise EmptyBatchError("All requested documents are already batched")

        hashes = self.document_repository.fetch_content_hashes(ordered_ids)
        batched_ids = [doc_id for doc_id in ordered_ids if doc_id in hashes]
        skipped = len(ordered_ids) - len(batched_ids)
        if skipped:
            logger.warning("Skipping %d documents without a content hash", skipped)
        if not batched_ids:
            raise EmptyBatchError("None of the requested documents has a content hash")

        leaf_hashes = [require_hash(hashes[doc_id], f"content hash of {doc_id}") for doc_id in batched_ids]
        tree = build_tree(leaf_hashes)

        now = now or datetime.now(timezone.utc)
        batch = MerkleBatch(
            id=str(uuid.uuid4()),
            batch_timestamp=now,
            root_hash=tree.root_hash,
            leaf_count=tree.leaf_count,
            tree_height=tree.height,
            batch_signature=self.signer.sign_batch(tree.root_hash, now),
            metadata=dict(metadata or {}),
            created_at=now,
        )

        timestamp_proof_ids = (
            self.proof_repository.latest_ids_for(batched_ids) if self.proof_repository else {}
        )
        leaves = [
            LeafRecord(
                document_id=doc_id,
                leaf_hash=leaf_hashes[index],
                leaf_index=index,
                proof_path=tree.proof_paths[index],
                batch_id=batch.id,
                timestamp_proof_id=timestamp_proof_ids.get(doc_id),
                created_at=now,
            )
            for index, doc_id in enumerate(batched_ids)
        ]

        with_retries(
            lambda: self.batch_repository.save_batch(batch, leaves),
            description=f"merkle batch {batch.id} insert",
            retries=self.persistence_retries,
            backoff_seconds=self.retry_backoff_seconds,
        )

        logger.info(
            "Merkle batch %s: %d leaves, height=%d, root=%s",
            batch.id, batch.leaf_count, batch.tree_height, batch.root_hash[:16],
        )
        return batch

    def create_batch_for_pending_documents(
        self, max_batch_size: int | None = None, now: datetime | None = None,
    ) -> MerkleBatch | None:
        """Batch whatever is pending. Returns None if nothing is."""
        document_ids = self.select_pending_documents(max_batch_size)
        if not document_ids:
            logger.info("No pending documents to batch")
            return None

        return self.create_batch(
            document_ids,
            metadata={
                "trigger": "auto_batch",
                "document_count": len(document_ids),
                "created_by": "system",
            },
            now=now,
        )
