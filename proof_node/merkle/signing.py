"""HMAC-SHA256 signatures over timestamp proofs and batch roots."""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timezone

logger = logging.getLogger(__name__)

GENESIS = "genesis"


def epoch(ts: datetime) -> str:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return f"{ts.timestamp():.6f}"


class HmacSigner:
    def __init__(self, key: bytes):
        if not key:
            raise ValueError("HMAC signing key must not be empty")
        self._key = key

    @classmethod
    def from_secret(cls, secret: str) -> "HmacSigner":
        """Build a signer from a configured secret.

        Hex secrets are decoded to bytes, anything else is used as UTF-8 text.
        An empty secret yields a random per-process key.
        """
        if not secret:
            logger.warning(
                "PROOF_SIGNING_KEY not set, using an ephemeral key; "
                "signatures will not verify after restart"
            )
            return cls(secrets.token_bytes(32))
        try:
            return cls(bytes.fromhex(secret))
        except ValueError:
            return cls(secret.encode("utf-8"))

    def sign(self, *parts: str) -> str:
        data = "::".join(parts).encode("utf-8")
        return hmac.new(self._key, data, hashlib.sha256).hexdigest()

    def verify(self, signature: str, *parts: str) -> bool:
        return hmac.compare_digest(self.sign(*parts).encode("utf-8"), (signature or "").encode("utf-8"))

    def sign_timestamp_proof(
        self,
        proof_hash: str,
        proof_timestamp: datetime,
        document_id: str,
        previous_proof_hash: str | None,
    ) -> str:
        return self.sign(proof_hash, epoch(proof_timestamp), document_id, previous_proof_hash or GENESIS)

    def verify_timestamp_proof(self, proof) -> bool:
        return self.verify(
            proof.hmac_signature,
            proof.proof_hash,
            epoch(proof.proof_timestamp),
            proof.document_id,
            proof.previous_proof_hash or GENESIS,
        )

    def sign_batch(self, root_hash: str, batch_timestamp: datetime) -> str:
        return self.sign(root_hash, epoch(batch_timestamp))

    def verify_batch(self, batch) -> bool:
        return self.verify(batch.batch_signature, batch.root_hash, epoch(batch.batch_timestamp))
