"""Tests for timestamp proofs and the per-document hash chain."""
from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import IntegrityError, OperationalError

from proof_node.entities.proof import TimestampProof
from proof_node.errors import ChainLinkError, InvalidHashError, PersistenceFailure
from proof_node.merkle.hasher import compute_content_hash
from proof_node.merkle.signing import HmacSigner
from proof_node.services.hash_chain import HashChain


now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class MemProofRepository:
    def __init__(self):
        self.proofs: list[TimestampProof] = []
        self.fail_with: list[Exception] = []

    def save(self, proof: TimestampProof) -> None:
        if self.fail_with:
            raise self.fail_with.pop(0)
        self.proofs.append(proof)

    def get_latest(self, document_id: str) -> TimestampProof | None:
        chain = self.get_chain(document_id)
        return chain[-1] if chain else None

    def get_chain(self, document_id: str) -> list[TimestampProof]:
        return sorted(
            [p for p in self.proofs if p.document_id == document_id],
            key=lambda p: p.proof_timestamp,
        )


def _hash(text: str) -> str:
    return compute_content_hash(text.encode("utf-8"))


class TestAppendProof(unittest.TestCase):
    def setUp(self):
        self.repo = MemProofRepository()
        self.signer = HmacSigner(b"test-key")
        self.chain = HashChain(self.repo, self.signer, retry_backoff_seconds=0)

    def test_first_proof_is_genesis(self):
        proof = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        self.assertIsNone(proof.previous_proof_hash)
        self.assertEqual(proof.status, "verified")
        self.assertEqual(proof.proof_timestamp, now)
        self.assertTrue(self.signer.verify_timestamp_proof(proof))
        self.assertEqual(self.repo.proofs, [proof])

    def test_second_proof_links_first(self):
        first = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        second = self.chain.append_proof("doc-1", _hash("v2"), now=now + timedelta(seconds=1))
        self.assertEqual(second.previous_proof_hash, first.proof_hash)
        self.assertEqual(second.status, "chained")
        self.assertTrue(self.signer.verify_timestamp_proof(second))

    def test_chains_are_per_document(self):
        self.chain.append_proof("doc-1", _hash("a"), now=now)
        other = self.chain.append_proof("doc-2", _hash("b"), now=now + timedelta(seconds=1))
        self.assertIsNone(other.previous_proof_hash)

    def test_matching_previous_hash_accepted(self):
        first = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        second = self.chain.append_proof(
            "doc-1", _hash("v2"), previous_proof_hash=first.proof_hash, now=now + timedelta(seconds=1),
        )
        self.assertEqual(second.previous_proof_hash, first.proof_hash)

    def test_stale_previous_hash_rejected(self):
        self.chain.append_proof("doc-1", _hash("v1"), now=now)
        with self.assertRaises(ChainLinkError):
            self.chain.append_proof("doc-1", _hash("v2"), previous_proof_hash=_hash("other"))
        self.assertEqual(len(self.repo.proofs), 1)

    def test_previous_hash_for_new_document_rejected(self):
        with self.assertRaises(ChainLinkError):
            self.chain.append_proof("doc-1", _hash("v1"), previous_proof_hash=_hash("v0"))

    def test_invalid_hash_rejected(self):
        with self.assertRaises(InvalidHashError):
            self.chain.append_proof("doc-1", "xyz")
        self.assertEqual(self.repo.proofs, [])

    def test_metadata_copied(self):
        meta = {"trigger": "upload"}
        proof = self.chain.append_proof("doc-1", _hash("v1"), metadata=meta, now=now)
        meta["trigger"] = "changed"
        self.assertEqual(proof.metadata, {"trigger": "upload"})

    def test_same_instant_appends_stay_ordered(self):
        first = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        second = self.chain.append_proof("doc-1", _hash("v2"), now=now)
        self.assertGreater(second.proof_timestamp, first.proof_timestamp)
        self.assertEqual(second.previous_proof_hash, first.proof_hash)
        self.assertTrue(self.signer.verify_timestamp_proof(second))
        self.assertEqual(self.repo.get_latest("doc-1").id, second.id)
        self.assertTrue(HashChain.verify_chain(self.chain.get_chain("doc-1")))

    def test_clock_skew_does_not_reorder_chain(self):
        first = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        second = self.chain.append_proof("doc-1", _hash("v2"), now=now - timedelta(minutes=5))
        self.assertEqual(second.proof_timestamp, now + timedelta(microseconds=1))
        self.assertEqual([p.id for p in self.chain.get_chain("doc-1")], [first.id, second.id])

    def test_transient_failure_retried(self):
        self.repo.fail_with = [OperationalError("INSERT", {}, Exception("connection reset"))]
        proof = self.chain.append_proof("doc-1", _hash("v1"), now=now)
        self.assertEqual(self.repo.proofs, [proof])

    def test_exhausted_retries_raise_persistence_failure(self):
        self.chain.persistence_retries = 2
        self.repo.fail_with = [
            OperationalError("INSERT", {}, Exception("timeout")),
            OperationalError("INSERT", {}, Exception("timeout")),
        ]
        with self.assertRaises(PersistenceFailure):
            self.chain.append_proof("doc-1", _hash("v1"), now=now)
        self.assertEqual(self.repo.proofs, [])

    def test_rejected_write_not_retried(self):
        self.repo.fail_with = [
            IntegrityError("INSERT", {}, Exception("fk violation")),
            OperationalError("INSERT", {}, Exception("never reached")),
        ]
        with self.assertRaises(PersistenceFailure):
            self.chain.append_proof("doc-1", _hash("v1"), now=now)
        self.assertEqual(len(self.repo.fail_with), 1)


class TestVerifyChain(unittest.TestCase):
    def setUp(self):
        self.repo = MemProofRepository()
        self.chain = HashChain(self.repo, HmacSigner(b"k"))
        for i in range(4):
            self.chain.append_proof("doc-1", _hash(f"v{i}"), now=now + timedelta(seconds=i))

    def test_intact_chain(self):
        self.assertTrue(HashChain.verify_chain(self.chain.get_chain("doc-1")))

    def test_empty_and_single_chains_valid(self):
        self.assertTrue(HashChain.verify_chain([]))
        self.assertTrue(HashChain.verify_chain(self.chain.get_chain("doc-1")[:1]))

    def test_broken_link_detected(self):
        proofs = self.chain.get_chain("doc-1")
        proofs[2].previous_proof_hash = _hash("forged")
        self.assertFalse(HashChain.verify_chain(proofs))

    def test_removed_proof_detected(self):
        proofs = self.chain.get_chain("doc-1")
        del proofs[1]
        self.assertFalse(HashChain.verify_chain(proofs))

    def test_swapped_proofs_detected(self):
        proofs = self.chain.get_chain("doc-1")
        proofs[1], proofs[2] = proofs[2], proofs[1]
        self.assertFalse(HashChain.verify_chain(proofs))

    def test_compute_content_hash(self):
        self.assertEqual(HashChain.compute_content_hash(b"v0"), _hash("v0"))


if __name__ == "__main__":
    unittest.main()
