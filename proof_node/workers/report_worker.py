from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Annotated, Any, Generator

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.engine import Engine
from sqlmodel import Session

from proof_node.config.runtime import RuntimeSettings
from proof_node.db import (
    DBDocumentRepository,
    DBMerkleBatchRepository,
    DBTimestampProofRepository,
    DBVerificationLogRepository,
    build_engine,
    create_session,
    with_retries,
)
from proof_node.entities.proof import (
    DocumentProofInfo,
    DocumentRecord,
    MerkleBatch,
    ProofType,
    TimestampProof,
    VerificationResult,
    proof_path_to_json,
)
from proof_node.errors import (
    ChainLinkError,
    EmptyBatchError,
    InvalidHashError,
    PersistenceFailure,
)
from proof_node.merkle.hasher import require_hash
from proof_node.merkle.signing import HmacSigner
from proof_node.middleware.auth import configure_auth
from proof_node.services.batch_coordinator import BatchCoordinator
from proof_node.services.hash_chain import HashChain
from proof_node.services.verifier import ProofVerifier

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything request handlers need that outlives a single request."""
    settings: RuntimeSettings
    signer: HmacSigner
    engine: Engine


# ── Request bodies ──


class VerifyRequest(BaseModel):
    current_hash: str


class DocumentRegistration(BaseModel):
    id: str
    file_name: str
    file_hash: str | None = None
    file_size: int | None = None
    timestamp: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class TimestampRequest(BaseModel):
    proof_hash: str
    previous_proof_hash: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class BatchRequest(BaseModel):
    document_ids: list[str]
    metadata: dict[str, Any] = Field(default_factory=dict)


class PendingBatchRequest(BaseModel):
    max_batch_size: int | None = Field(default=None, ge=1, le=1000)


# ── Dependencies ──


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_db_session(
    context: Annotated[AppContext, Depends(get_context)]
) -> Generator[Session, Any, None]:
    with create_session(context.engine) as session:
        yield session


def get_document_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBDocumentRepository:
    return DBDocumentRepository(session_db)


def get_batch_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBMerkleBatchRepository:
    return DBMerkleBatchRepository(session_db)


def get_proof_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBTimestampProofRepository:
    return DBTimestampProofRepository(session_db)


def get_log_repository(
    session_db: Annotated[Session, Depends(get_db_session)]
) -> DBVerificationLogRepository:
    return DBVerificationLogRepository(session_db)


def get_verifier(
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
    proof_repo: Annotated[DBTimestampProofRepository, Depends(get_proof_repository)],
    context: Annotated[AppContext, Depends(get_context)],
) -> ProofVerifier:
    return ProofVerifier(batch_repository=batch_repo, proof_repository=proof_repo, signer=context.signer)


def get_hash_chain(
    proof_repo: Annotated[DBTimestampProofRepository, Depends(get_proof_repository)],
    context: Annotated[AppContext, Depends(get_context)],
) -> HashChain:
    return HashChain(
        proof_repository=proof_repo,
        signer=context.signer,
        persistence_retries=context.settings.persistence_retries,
        retry_backoff_seconds=context.settings.persistence_retry_backoff_seconds,
    )


def get_batch_coordinator(
    document_repo: Annotated[DBDocumentRepository, Depends(get_document_repository)],
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
    proof_repo: Annotated[DBTimestampProofRepository, Depends(get_proof_repository)],
    context: Annotated[AppContext, Depends(get_context)],
) -> BatchCoordinator:
    return BatchCoordinator(
        document_repository=document_repo,
        batch_repository=batch_repo,
        proof_repository=proof_repo,
        signer=context.signer,
        max_batch_size=context.settings.batch_max_size,
        persistence_retries=context.settings.persistence_retries,
        retry_backoff_seconds=context.settings.persistence_retry_backoff_seconds,
    )


# ── Serialization ──


def _batch_to_dict(batch: MerkleBatch) -> dict[str, Any]:
    return {
        "id": batch.id,
        "batch_timestamp": batch.batch_timestamp,
        "root_hash": batch.root_hash,
        "leaf_count": batch.leaf_count,
        "tree_height": batch.tree_height,
        "batch_signature": batch.batch_signature,
        "metadata": batch.metadata,
        "status": batch.status(),
        "created_at": batch.created_at,
    }


def _proof_to_dict(proof: TimestampProof) -> dict[str, Any]:
    return {
        "id": proof.id,
        "document_id": proof.document_id,
        "proof_hash": proof.proof_hash,
        "proof_timestamp": proof.proof_timestamp,
        "hmac_signature": proof.hmac_signature,
        "previous_proof_hash": proof.previous_proof_hash,
        "metadata": proof.metadata,
        "status": proof.status,
        "created_at": proof.created_at,
    }


def document_proof_info(
    document_id: str,
    batch_repo: DBMerkleBatchRepository,
    proof_repo: DBTimestampProofRepository,
) -> DocumentProofInfo:
    proof = proof_repo.get_latest(document_id)
    leaf = batch_repo.get_latest_leaf(document_id)
    return DocumentProofInfo(
        document_id=document_id,
        has_timestamp_proof=proof is not None,
        has_merkle_proof=leaf is not None,
        timestamp_proof_id=proof.id if proof else None,
        timestamp_proof_date=proof.proof_timestamp if proof else None,
        merkle_batch_id=leaf.batch_id if leaf else None,
        merkle_batch_date=leaf.created_at if leaf else None,
        leaf_index=leaf.leaf_index if leaf else None,
    )


def _record_verification(
    log_repo: DBVerificationLogRepository, result: VerificationResult, document_id: str,
) -> None:
    details = {"document_id": document_id, **result.to_dict()}
    try:
        if result.proof_type == ProofType.MERKLE:
            with_retries(
                lambda: log_repo.log_batch_verification(result.details["batch_id"], result.valid, details),
                description="batch verification log insert",
                retries=1,
            )
        elif result.proof_type == ProofType.TIMESTAMP:
            with_retries(
                lambda: log_repo.log_proof_verification(result.details["proof_id"], result.valid, details),
                description="proof verification log insert",
                retries=1,
            )
    except PersistenceFailure as exc:
        logger.warning("verification of %s not recorded: %s", document_id, exc)


# ── Routes ──


router = APIRouter()


@router.get("/healthz")
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/info")
def get_node_info(context: Annotated[AppContext, Depends(get_context)]) -> dict[str, Any]:
    return {
        "node_id": context.settings.node_id,
        "hash_algorithm": "sha256",
        "odd_leaf_policy": "duplicate",
        "batch_interval_seconds": context.settings.batch_interval_seconds,
        "batch_min_pending_documents": context.settings.batch_min_pending_documents,
        "batch_max_size": context.settings.batch_max_size,
    }


@router.post("/proofs/documents/{document_id}/verify")
def verify_document(
    document_id: str,
    body: VerifyRequest,
    verifier: Annotated[ProofVerifier, Depends(get_verifier)],
    log_repo: Annotated[DBVerificationLogRepository, Depends(get_log_repository)],
) -> dict[str, Any]:
    """Check a document's current hash against its proof of record."""
    require_hash(body.current_hash, "current_hash")
    result = verifier.verify_document_integrity(document_id, body.current_hash)
    _record_verification(log_repo, result, document_id)
    return result.to_dict()


@router.get("/proofs/documents/{document_id}")
def get_document_proofs(
    document_id: str,
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
    proof_repo: Annotated[DBTimestampProofRepository, Depends(get_proof_repository)],
) -> dict[str, Any]:
    info = document_proof_info(document_id, batch_repo, proof_repo)
    return {
        "document_id": info.document_id,
        "has_timestamp_proof": info.has_timestamp_proof,
        "has_merkle_proof": info.has_merkle_proof,
        "timestamp_proof_id": info.timestamp_proof_id,
        "timestamp_proof_date": info.timestamp_proof_date,
        "merkle_batch_id": info.merkle_batch_id,
        "merkle_batch_date": info.merkle_batch_date,
        "leaf_index": info.leaf_index,
    }


@router.get("/proofs/documents/{document_id}/leaf")
def get_document_leaf(
    document_id: str,
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
) -> dict[str, Any]:
    """The document's latest Merkle leaf with its proof path, for independent checks."""
    leaf = batch_repo.get_latest_leaf(document_id)
    if leaf is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No Merkle proof found for document '{document_id}'",
        )
    batch = batch_repo.get(leaf.batch_id)
    return {
        "document_id": leaf.document_id,
        "batch_id": leaf.batch_id,
        "leaf_hash": leaf.leaf_hash,
        "leaf_index": leaf.leaf_index,
        "proof_path": proof_path_to_json(leaf.proof_path),
        "root_hash": batch.root_hash if batch else None,
        "timestamp_proof_id": leaf.timestamp_proof_id,
    }


@router.get("/proofs/documents/{document_id}/chain")
def get_document_chain(
    document_id: str,
    hash_chain: Annotated[HashChain, Depends(get_hash_chain)],
) -> dict[str, Any]:
    proofs = hash_chain.get_chain(document_id)
    return {
        "document_id": document_id,
        "chain_valid": HashChain.verify_chain(proofs),
        "proofs": [_proof_to_dict(p) for p in proofs],
    }


@router.get("/proofs/timestamps/{proof_id}/logs")
def get_verification_logs(
    proof_id: str,
    log_repo: Annotated[DBVerificationLogRepository, Depends(get_log_repository)],
) -> list[dict[str, Any]]:
    return [
        {
            "id": log.id,
            "timestamp_proof_id": log.timestamp_proof_id,
            "verified_at": log.verified_at,
            "verified_by": log.verified_by,
            "verification_result": log.verification_result,
            "verification_method": log.verification_method,
            "details": log.details,
        }
        for log in log_repo.find_for_proof(proof_id)
    ]


@router.get("/proofs/batches")
def get_recent_batches(
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
    limit: Annotated[int, Query(ge=1, le=500)] = 10,
) -> list[dict[str, Any]]:
    return [_batch_to_dict(b) for b in batch_repo.find_recent(limit)]


@router.get("/proofs/batches/statistics")
def get_batch_statistics(
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
) -> dict[str, Any]:
    stats = batch_repo.statistics()
    return {
        "total_batches": stats.total_batches,
        "total_documents_batched": stats.total_documents_batched,
        "average_batch_size": stats.average_batch_size,
        "latest_batch_timestamp": stats.latest_batch_timestamp,
    }


@router.get("/proofs/batches/{batch_id}")
def get_batch(
    batch_id: str,
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
) -> dict[str, Any]:
    batch = batch_repo.get(batch_id)
    if batch is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Merkle batch not found")
    return _batch_to_dict(batch)


@router.get("/proofs/batches/{batch_id}/documents")
def get_batch_documents(
    batch_id: str,
    batch_repo: Annotated[DBMerkleBatchRepository, Depends(get_batch_repository)],
) -> list[dict[str, Any]]:
    if batch_repo.get(batch_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Merkle batch not found")
    return [
        {
            "document_id": doc.document_id,
            "file_name": doc.file_name,
            "leaf_hash": doc.leaf_hash,
            "leaf_index": doc.leaf_index,
            "proof_path": proof_path_to_json(doc.proof_path),
        }
        for doc in batch_repo.find_batch_documents(batch_id)
    ]


# ── Admin ──


@router.post("/admin/documents", status_code=201)
def register_document(
    body: DocumentRegistration,
    document_repo: Annotated[DBDocumentRepository, Depends(get_document_repository)],
    hash_chain: Annotated[HashChain, Depends(get_hash_chain)],
) -> dict[str, Any]:
    """Record an uploaded document's content hash, timestamping it by default."""
    if body.file_hash is not None:
        require_hash(body.file_hash, "file_hash")
    document = DocumentRecord(
        id=body.id,
        file_name=body.file_name,
        file_hash=body.file_hash,
        file_size=body.file_size,
        uploaded_at=datetime.now(timezone.utc),
    )
    with_retries(
        lambda: document_repo.save(document),
        description=f"document {body.id} insert",
        retries=1,
    )

    proof = None
    if body.timestamp and body.file_hash is not None:
        proof = hash_chain.append_proof(
            body.id, body.file_hash, metadata={"trigger": "upload", **body.metadata},
        )
    return {
        "document_id": document.id,
        "file_hash": document.file_hash,
        "timestamp_proof": _proof_to_dict(proof) if proof else None,
    }


@router.post("/admin/documents/{document_id}/timestamps", status_code=201)
def create_timestamp_proof(
    document_id: str,
    body: TimestampRequest,
    hash_chain: Annotated[HashChain, Depends(get_hash_chain)],
) -> dict[str, Any]:
    proof = hash_chain.append_proof(
        document_id,
        body.proof_hash,
        previous_proof_hash=body.previous_proof_hash,
        metadata=body.metadata,
    )
    return _proof_to_dict(proof)


@router.post("/admin/batches", status_code=201)
def create_batch(
    body: BatchRequest,
    coordinator: Annotated[BatchCoordinator, Depends(get_batch_coordinator)],
) -> dict[str, Any]:
    batch = coordinator.create_batch(body.document_ids, metadata=body.metadata)
    return _batch_to_dict(batch)


@router.post("/admin/batches/pending")
def create_pending_batch(
    body: PendingBatchRequest,
    coordinator: Annotated[BatchCoordinator, Depends(get_batch_coordinator)],
) -> dict[str, Any]:
    batch = coordinator.create_batch_for_pending_documents(body.max_batch_size)
    if batch is None:
        return {"created": False, "batch": None, "message": "No pending documents to batch"}
    return {"created": True, "batch": _batch_to_dict(batch)}


# ── App factory ──


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})
    return handler


def create_app(
    settings: RuntimeSettings | None = None,
    signer: HmacSigner | None = None,
    engine: Engine | None = None,
) -> FastAPI:
    settings = settings or RuntimeSettings.from_env()
    app = FastAPI(title="Proof Node Report Worker")
    app.state.context = AppContext(
        settings=settings,
        signer=signer or HmacSigner.from_secret(settings.proof_signing_key),
        engine=engine or build_engine(settings),
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    configure_auth(app)

    app.add_exception_handler(EmptyBatchError, _error_handler(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(InvalidHashError, _error_handler(status.HTTP_400_BAD_REQUEST))
    app.add_exception_handler(ChainLinkError, _error_handler(status.HTTP_409_CONFLICT))
    app.add_exception_handler(PersistenceFailure, _error_handler(status.HTTP_503_SERVICE_UNAVAILABLE))

    app.include_router(router)
    return app


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    logging.getLogger(__name__).info("proof node report worker bootstrap")
    uvicorn.run(create_app(), host="0.0.0.0", port=8000)
