"""initial schema: documents, timestamp proofs, merkle batches and verification logs

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _jsonb() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), "postgresql")


def upgrade() -> None:
    # ── Documents ──
    op.create_table(
        "documents",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("file_name", sa.String(), nullable=False),
        sa.Column("file_hash", sa.String(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_documents_file_hash", "documents", ["file_hash"])
    op.create_index("ix_documents_uploaded_at", "documents", ["uploaded_at"])

    # ── Timestamp proofs (append-only hash chain per document) ──
    op.create_table(
        "timestamp_proofs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("proof_hash", sa.String(), nullable=False),
        sa.Column("proof_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("hmac_signature", sa.String(), nullable=False),
        sa.Column("previous_proof_hash", sa.String(), nullable=True),
        sa.Column("metadata_jsonb", _jsonb(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_timestamp_proofs_document_id", "timestamp_proofs", ["document_id"])
    op.create_index("ix_timestamp_proofs_proof_timestamp", "timestamp_proofs", ["proof_timestamp"])

    # ── Merkle batches → leaves ──
    op.create_table(
        "merkle_tree_batches",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("batch_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("root_hash", sa.String(), nullable=False),
        sa.Column("leaf_count", sa.Integer(), nullable=False),
        sa.Column("tree_height", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("batch_signature", sa.String(), nullable=False),
        sa.Column("metadata_jsonb", _jsonb(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_merkle_tree_batches_batch_timestamp", "merkle_tree_batches", ["batch_timestamp"])
    op.create_index("ix_merkle_tree_batches_root_hash", "merkle_tree_batches", ["root_hash"])

    op.create_table(
        "merkle_tree_leaves",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("batch_id", sa.String(), sa.ForeignKey("merkle_tree_batches.id"), nullable=False),
        sa.Column("document_id", sa.String(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("leaf_hash", sa.String(), nullable=False),
        sa.Column("leaf_index", sa.Integer(), nullable=False),
        sa.Column("proof_path_jsonb", _jsonb(), nullable=True),
        sa.Column("timestamp_proof_id", sa.String(), sa.ForeignKey("timestamp_proofs.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("batch_id", "document_id"),
        sa.UniqueConstraint("batch_id", "leaf_index"),
        sa.UniqueConstraint("document_id", name="uq_merkle_tree_leaves_document_id"),
    )
    op.create_index("ix_merkle_tree_leaves_batch_id", "merkle_tree_leaves", ["batch_id"])
    op.create_index("ix_merkle_tree_leaves_document_id", "merkle_tree_leaves", ["document_id"])
    op.create_index("ix_merkle_tree_leaves_created_at", "merkle_tree_leaves", ["created_at"])

    # ── Verification logs ──
    op.create_table(
        "proof_verification_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("timestamp_proof_id", sa.String(), sa.ForeignKey("timestamp_proofs.id"), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_by", sa.String(), nullable=True),
        sa.Column("verification_result", sa.Boolean(), nullable=False),
        sa.Column("verification_method", sa.String(), nullable=False),
        sa.Column("details_jsonb", _jsonb(), nullable=True),
    )
    op.create_index("ix_proof_verification_logs_timestamp_proof_id", "proof_verification_logs", ["timestamp_proof_id"])
    op.create_index("ix_proof_verification_logs_verified_at", "proof_verification_logs", ["verified_at"])

    op.create_table(
        "batch_verification_logs",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("batch_id", sa.String(), sa.ForeignKey("merkle_tree_batches.id"), nullable=False),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("verified_by", sa.String(), nullable=True),
        sa.Column("verification_result", sa.Boolean(), nullable=False),
        sa.Column("documents_verified", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("verification_method", sa.String(), nullable=False),
        sa.Column("details_jsonb", _jsonb(), nullable=True),
    )
    op.create_index("ix_batch_verification_logs_batch_id", "batch_verification_logs", ["batch_id"])
    op.create_index("ix_batch_verification_logs_verified_at", "batch_verification_logs", ["verified_at"])


def downgrade() -> None:
    op.drop_table("batch_verification_logs")
    op.drop_table("proof_verification_logs")
    op.drop_table("merkle_tree_leaves")
    op.drop_table("merkle_tree_batches")
    op.drop_table("timestamp_proofs")
    op.drop_table("documents")
