from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func
from sqlmodel import Session, select

from proof_node.db.tables import (
    BatchVerificationLogRow,
    DocumentRow,
    MerkleBatchRow,
    MerkleLeafRow,
    ProofVerificationLogRow,
    TimestampProofRow,
)
from proof_node.entities.proof import (
    BatchDocument,
    BatchStatistics,
    DocumentRecord,
    LeafRecord,
    MerkleBatch,
    TimestampProof,
    VerificationLog,
    proof_path_from_json,
    proof_path_to_json,
)


def _ensure_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class DBDocumentRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def save(self, document: DocumentRecord) -> None:
        existing = self._session.get(DocumentRow, document.id)
        if existing is None:
            self._session.add(DocumentRow(
                id=document.id,
                file_name=document.file_name,
                file_hash=document.file_hash,
                file_size=document.file_size,
                uploaded_at=document.uploaded_at,
            ))
        else:
            existing.file_name = document.file_name
            existing.file_hash = document.file_hash
            existing.file_size = document.file_size
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def get(self, document_id: str) -> DocumentRecord | None:
        row = self._session.get(DocumentRow, document_id)
        return self._row_to_domain(row) if row else None

    def fetch_content_hashes(self, document_ids: Iterable[str]) -> dict[str, str]:
        ids = list(document_ids)
        if not ids:
            return {}
        rows = self._session.exec(
            select(DocumentRow).where(DocumentRow.id.in_(ids), DocumentRow.file_hash.isnot(None))
        ).all()
        return {row.id: row.file_hash for row in rows}

    def _pending_stmt(self):
        batched = select(MerkleLeafRow.document_id)
        return select(DocumentRow).where(
            DocumentRow.file_hash.isnot(None),
            DocumentRow.id.not_in(batched),
        )

    def find_pending(self, limit: int = 100) -> list[str]:
        """Documents with a content hash and no Merkle leaf, oldest upload first."""
        stmt = self._pending_stmt().order_by(DocumentRow.uploaded_at.asc()).limit(max(1, int(limit)))
        return [row.id for row in self._session.exec(stmt).all()]

    def count_pending(self) -> int:
        subquery = self._pending_stmt().subquery()
        return int(self._session.exec(select(func.count()).select_from(subquery)).one())

    @staticmethod
    def _row_to_domain(row: DocumentRow) -> DocumentRecord:
        return DocumentRecord(
            id=row.id,
            file_name=row.file_name,
            file_hash=row.file_hash,
            file_size=row.file_size,
            uploaded_at=_ensure_utc(row.uploaded_at),
        )


class DBMerkleBatchRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def save_batch(self, batch: MerkleBatch, leaves: list[LeafRecord]) -> None:
        """Write the batch row and every leaf row in a single commit."""
        try:
            self._session.add(MerkleBatchRow(
                id=batch.id,
                batch_timestamp=batch.batch_timestamp,
                root_hash=batch.root_hash,
                leaf_count=batch.leaf_count,
                tree_height=batch.tree_height,
                batch_signature=batch.batch_signature,
                metadata_jsonb=batch.metadata,
                created_at=batch.created_at,
            ))
            # Batch row must exist before leaves reference it
            self._session.flush()
            for leaf in leaves:
                self._session.add(MerkleLeafRow(
                    id=str(uuid.uuid4()),
                    batch_id=batch.id,
                    document_id=leaf.document_id,
                    leaf_hash=leaf.leaf_hash,
                    leaf_index=leaf.leaf_index,
                    proof_path_jsonb=proof_path_to_json(leaf.proof_path),
                    timestamp_proof_id=leaf.timestamp_proof_id,
                    created_at=leaf.created_at,
                ))
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def get(self, batch_id: str) -> MerkleBatch | None:
        row = self._session.get(MerkleBatchRow, batch_id)
        return self._batch_to_domain(row) if row else None

    def find_recent(self, limit: int = 10) -> list[MerkleBatch]:
        stmt = (
            select(MerkleBatchRow)
            .order_by(MerkleBatchRow.batch_timestamp.desc())
            .limit(max(1, int(limit)))
        )
        return [self._batch_to_domain(row) for row in self._session.exec(stmt).all()]

    def get_latest_leaf(self, document_id: str) -> LeafRecord | None:
        row = self._session.exec(
            select(MerkleLeafRow)
            .where(MerkleLeafRow.document_id == document_id)
            .order_by(MerkleLeafRow.created_at.desc())
        ).first()
        return self._leaf_to_domain(row) if row else None

    def find_batched_document_ids(self, document_ids: Iterable[str]) -> set[str]:
        ids = list(document_ids)
        if not ids:
            return set()
        stmt = select(MerkleLeafRow.document_id).where(MerkleLeafRow.document_id.in_(ids))
        return set(self._session.exec(stmt).all())

    def find_leaves(self, batch_id: str) -> list[LeafRecord]:
        stmt = (
            select(MerkleLeafRow)
            .where(MerkleLeafRow.batch_id == batch_id)
            .order_by(MerkleLeafRow.leaf_index.asc())
        )
        return [self._leaf_to_domain(row) for row in self._session.exec(stmt).all()]

    def find_batch_documents(self, batch_id: str) -> list[BatchDocument]:
        stmt = (
            select(MerkleLeafRow, DocumentRow.file_name)
            .join(DocumentRow, DocumentRow.id == MerkleLeafRow.document_id, isouter=True)
            .where(MerkleLeafRow.batch_id == batch_id)
            .order_by(MerkleLeafRow.leaf_index.asc())
        )
        return [
            BatchDocument(
                document_id=leaf.document_id,
                file_name=file_name,
                leaf_hash=leaf.leaf_hash,
                leaf_index=leaf.leaf_index,
                proof_path=proof_path_from_json(leaf.proof_path_jsonb),
            )
            for leaf, file_name in self._session.exec(stmt).all()
        ]

    def statistics(self) -> BatchStatistics:
        total, documents, average, latest = self._session.exec(
            select(
                func.count(MerkleBatchRow.id),
                func.coalesce(func.sum(MerkleBatchRow.leaf_count), 0),
                func.coalesce(func.avg(MerkleBatchRow.leaf_count), 0),
                func.max(MerkleBatchRow.batch_timestamp),
            )
        ).one()
        return BatchStatistics(
            total_batches=int(total),
            total_documents_batched=int(documents),
            average_batch_size=float(average),
            latest_batch_timestamp=_ensure_utc(latest),
        )

    @staticmethod
    def _batch_to_domain(row: MerkleBatchRow) -> MerkleBatch:
        return MerkleBatch(
            id=row.id,
            batch_timestamp=_ensure_utc(row.batch_timestamp),
            root_hash=row.root_hash,
            leaf_count=row.leaf_count,
            tree_height=row.tree_height,
            batch_signature=row.batch_signature,
            metadata=dict(row.metadata_jsonb or {}),
            created_at=_ensure_utc(row.created_at),
        )

    @staticmethod
    def _leaf_to_domain(row: MerkleLeafRow) -> LeafRecord:
        return LeafRecord(
            document_id=row.document_id,
            leaf_hash=row.leaf_hash,
            leaf_index=row.leaf_index,
            proof_path=proof_path_from_json(row.proof_path_jsonb),
            batch_id=row.batch_id,
            timestamp_proof_id=row.timestamp_proof_id,
            created_at=_ensure_utc(row.created_at),
        )


# Ties on proof_timestamp are broken the same way in both directions, so the
# latest proof is always the last link of the chain
def _oldest_first():
    return (
        TimestampProofRow.proof_timestamp.asc(),
        TimestampProofRow.created_at.asc(),
        TimestampProofRow.id.asc(),
    )


def _newest_first():
    return (
        TimestampProofRow.proof_timestamp.desc(),
        TimestampProofRow.created_at.desc(),
        TimestampProofRow.id.desc(),
    )


class DBTimestampProofRepository:
    def __init__(self, session: Session):
        self._session = session

    def rollback(self) -> None:
        self._session.rollback()

    def save(self, proof: TimestampProof) -> None:
        self._session.add(TimestampProofRow(
            id=proof.id,
            document_id=proof.document_id,
            proof_hash=proof.proof_hash,
            proof_timestamp=proof.proof_timestamp,
            hmac_signature=proof.hmac_signature,
            previous_proof_hash=proof.previous_proof_hash,
            metadata_jsonb=proof.metadata,
            created_at=proof.created_at,
        ))
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

    def get(self, proof_id: str) -> TimestampProof | None:
        row = self._session.get(TimestampProofRow, proof_id)
        return self._row_to_domain(row) if row else None

    def get_latest(self, document_id: str) -> TimestampProof | None:
        row = self._session.exec(
            select(TimestampProofRow)
            .where(TimestampProofRow.document_id == document_id)
            .order_by(*_newest_first())
        ).first()
        return self._row_to_domain(row) if row else None

    def get_chain(self, document_id: str) -> list[TimestampProof]:
        """All proofs of a document, oldest first."""
        stmt = (
            select(TimestampProofRow)
            .where(TimestampProofRow.document_id == document_id)
            .order_by(*_oldest_first())
        )
        return [self._row_to_domain(row) for row in self._session.exec(stmt).all()]

    def latest_ids_for(self, document_ids: Iterable[str]) -> dict[str, str]:
        ids = list(document_ids)
        if not ids:
            return {}
        stmt = (
            select(TimestampProofRow)
            .where(TimestampProofRow.document_id.in_(ids))
            .order_by(*_oldest_first())
        )
        latest: dict[str, str] = {}
        for row in self._session.exec(stmt).all():
            latest[row.document_id] = row.id
        return latest

    @staticmethod
    def _row_to_domain(row: TimestampProofRow) -> TimestampProof:
        return TimestampProof(
            id=row.id,
            document_id=row.document_id,
            proof_hash=row.proof_hash,
            proof_timestamp=_ensure_utc(row.proof_timestamp),
            hmac_signature=row.hmac_signature,
            previous_proof_hash=row.previous_proof_hash,
            metadata=dict(row.metadata_jsonb or {}),
            created_at=_ensure_utc(row.created_at),
        )


class DBVerificationLogRepository:
    def __init__(self, session: Session):
        self._session = session

    def log_proof_verification(
        self,
        timestamp_proof_id: str,
        verification_result: bool,
        details: dict[str, Any],
        verified_by: str | None = None,
        verification_method: str = "hmac_hash_comparison",
    ) -> None:
        self._session.add(ProofVerificationLogRow(
            id=str(uuid.uuid4()),
            timestamp_proof_id=timestamp_proof_id,
            verified_by=verified_by,
            verification_result=verification_result,
            verification_method=verification_method,
            details_jsonb=details,
        ))
        self._commit()

    def log_batch_verification(
        self,
        batch_id: str,
        verification_result: bool,
        details: dict[str, Any],
        verified_by: str | None = None,
        verification_method: str = "merkle_proof_path",
    ) -> None:
        self._session.add(BatchVerificationLogRow(
            id=str(uuid.uuid4()),
            batch_id=batch_id,
            verified_by=verified_by,
            verification_result=verification_result,
            documents_verified=1,
            verification_method=verification_method,
            details_jsonb=details,
        ))
        self._commit()

    def find_for_proof(self, timestamp_proof_id: str) -> list[VerificationLog]:
        stmt = (
            select(ProofVerificationLogRow)
            .where(ProofVerificationLogRow.timestamp_proof_id == timestamp_proof_id)
            .order_by(ProofVerificationLogRow.verified_at.desc())
        )
        return [
            VerificationLog(
                id=row.id,
                timestamp_proof_id=row.timestamp_proof_id,
                verified_at=_ensure_utc(row.verified_at),
                verification_result=row.verification_result,
                verification_method=row.verification_method,
                verified_by=row.verified_by,
                details=dict(row.details_jsonb or {}),
            )
            for row in self._session.exec(stmt).all()
        ]

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise
