from __future__ import annotations

from dataclasses import dataclass
import os


@dataclass(frozen=True)
class RuntimeSettings:
    node_id: str
    batch_interval_seconds: int
    batch_min_pending_documents: int
    batch_max_size: int
    proof_signing_key: str
    persistence_retries: int
    persistence_retry_backoff_seconds: float
    persistence_timeout_seconds: float

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            node_id=os.getenv("NODE_ID", "proof-node"),
            batch_interval_seconds=int(os.getenv("BATCH_INTERVAL_SECONDS", "300")),
            batch_min_pending_documents=int(os.getenv("BATCH_MIN_PENDING_DOCUMENTS", "10")),
            batch_max_size=int(os.getenv("BATCH_MAX_SIZE", "100")),
            proof_signing_key=os.getenv("PROOF_SIGNING_KEY", ""),
            persistence_retries=int(os.getenv("PERSISTENCE_RETRIES", "3")),
            persistence_retry_backoff_seconds=float(os.getenv("PERSISTENCE_RETRY_BACKOFF_SECONDS", "1.0")),
            persistence_timeout_seconds=float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "10")),
        )
