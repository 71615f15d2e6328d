"""Merkle batch tables: sealed batches, their leaves and verification logs."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field, SQLModel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def json_column() -> Column:
    return Column(JSON().with_variant(JSONB(), "postgresql"))


class MerkleBatchRow(SQLModel, table=True):
    """One row per sealed batch. Immutable once written."""
    __tablename__ = "merkle_tree_batches"

    id: str = Field(primary_key=True)
    batch_timestamp: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    root_hash: str = Field(index=True)
    leaf_count: int
    tree_height: int = Field(default=0)
    batch_signature: str
    metadata_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class MerkleLeafRow(SQLModel, table=True):
    """A document's leaf hash and proof path inside one batch."""
    __tablename__ = "merkle_tree_leaves"
    __table_args__ = (
        UniqueConstraint("batch_id", "document_id"),
        UniqueConstraint("batch_id", "leaf_index"),
        # Concurrent batch commits over the same document: the store keeps the first
        UniqueConstraint("document_id", name="uq_merkle_tree_leaves_document_id"),
    )

    id: str = Field(primary_key=True)
    batch_id: str = Field(foreign_key="merkle_tree_batches.id", index=True)
    document_id: str = Field(foreign_key="documents.id", index=True)
    leaf_hash: str
    leaf_index: int
    proof_path_jsonb: list[dict[str, Any]] = Field(default_factory=list, sa_column=json_column())
    timestamp_proof_id: Optional[str] = Field(default=None, foreign_key="timestamp_proofs.id")
    created_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))


class BatchVerificationLogRow(SQLModel, table=True):
    __tablename__ = "batch_verification_logs"

    id: str = Field(primary_key=True)
    batch_id: str = Field(foreign_key="merkle_tree_batches.id", index=True)
    verified_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    verified_by: Optional[str] = Field(default=None)
    verification_result: bool
    documents_verified: int = Field(default=1)
    verification_method: str
    details_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
