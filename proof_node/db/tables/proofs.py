"""Timestamp proof tables: the per-document hash chain and its verification log."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from proof_node.db.tables.merkle import json_column


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TimestampProofRow(SQLModel, table=True):
    """Append-only. Each row may point back at the previous proof of the same document."""
    __tablename__ = "timestamp_proofs"

    id: str = Field(primary_key=True)
    document_id: str = Field(foreign_key="documents.id", index=True)
    proof_hash: str
    proof_timestamp: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    hmac_signature: str
    previous_proof_hash: Optional[str] = Field(default=None)
    metadata_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))


class ProofVerificationLogRow(SQLModel, table=True):
    __tablename__ = "proof_verification_logs"

    id: str = Field(primary_key=True)
    timestamp_proof_id: str = Field(foreign_key="timestamp_proofs.id", index=True)
    verified_at: datetime = Field(default_factory=utc_now, index=True, sa_type=DateTime(timezone=True))
    verified_by: Optional[str] = Field(default=None)
    verification_result: bool
    verification_method: str
    details_jsonb: dict[str, Any] = Field(default_factory=dict, sa_column=json_column())
