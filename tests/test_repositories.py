"""Tests for the SQLModel repositories against in-memory SQLite."""
from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy import DateTime, UniqueConstraint
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, SQLModel, create_engine, select

from proof_node.db.repositories import (
    DBDocumentRepository,
    DBMerkleBatchRepository,
    DBTimestampProofRepository,
    DBVerificationLogRepository,
)
from proof_node.db.tables import MerkleBatchRow, MerkleLeafRow
from proof_node.entities.proof import DocumentRecord, LeafRecord, MerkleBatch, TimestampProof
from proof_node.errors import EmptyBatchError, PersistenceFailure
from proof_node.merkle.hasher import compute_content_hash
from proof_node.merkle.signing import HmacSigner
from proof_node.services.batch_coordinator import BatchCoordinator
from proof_node.services.hash_chain import HashChain


now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def _make_engine():
    engine = create_engine("sqlite:///:memory:")
    SQLModel.metadata.create_all(engine)
    return engine


def _hash(text: str) -> str:
    return compute_content_hash(text.encode("utf-8"))


class RepositoryTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = _make_engine()
        self.session = Session(self.engine)
        self.documents = DBDocumentRepository(self.session)
        self.batches = DBMerkleBatchRepository(self.session)
        self.proofs = DBTimestampProofRepository(self.session)
        self.logs = DBVerificationLogRepository(self.session)
        self.signer = HmacSigner(b"repo-key")
        self._next_doc = 0

    def tearDown(self):
        self.session.close()

    def _add_documents(self, count: int, with_hash: bool = True) -> list[str]:
        ids = []
        for _ in range(count):
            seq = self._next_doc
            self._next_doc += 1
            doc_id = f"doc-{seq:03d}-{'h' if with_hash else 'n'}"
            self.documents.save(DocumentRecord(
                id=doc_id,
                file_name=f"{doc_id}.pdf",
                file_hash=_hash(doc_id) if with_hash else None,
                file_size=100 + seq,
                uploaded_at=now + timedelta(seconds=seq),
            ))
            ids.append(doc_id)
        return ids

    def _coordinator(self) -> BatchCoordinator:
        return BatchCoordinator(
            document_repository=self.documents,
            batch_repository=self.batches,
            proof_repository=self.proofs,
            signer=self.signer,
        )


class TestDocumentRepository(RepositoryTestCase):
    def test_save_and_get(self):
        self._add_documents(1)
        doc = self.documents.get("doc-000-h")
        self.assertEqual(doc.file_name, "doc-000-h.pdf")
        self.assertEqual(doc.file_hash, _hash("doc-000-h"))
        self.assertEqual(doc.uploaded_at, now)

    def test_save_updates_existing(self):
        self._add_documents(1)
        self.documents.save(DocumentRecord(id="doc-000-h", file_name="renamed.pdf", file_hash=_hash("new")))
        doc = self.documents.get("doc-000-h")
        self.assertEqual(doc.file_name, "renamed.pdf")
        self.assertEqual(doc.file_hash, _hash("new"))

    def test_get_missing(self):
        self.assertIsNone(self.documents.get("nope"))

    def test_fetch_content_hashes_skips_unhashed(self):
        hashed = self._add_documents(2)
        unhashed = self._add_documents(1, with_hash=False)
        result = self.documents.fetch_content_hashes(hashed + unhashed + ["missing"])
        self.assertEqual(set(result), set(hashed))

    def test_pending_oldest_first_and_limited(self):
        ids = self._add_documents(5)
        self._add_documents(2, with_hash=False)
        self.assertEqual(self.documents.count_pending(), 5)
        self.assertEqual(self.documents.find_pending(limit=3), ids[:3])

    def test_batched_documents_no_longer_pending(self):
        ids = self._add_documents(4)
        self._coordinator().create_batch(ids[:3], now=now)
        self.assertEqual(self.documents.find_pending(), ids[3:])
        self.assertEqual(self.documents.count_pending(), 1)


class TestMerkleBatchRepository(RepositoryTestCase):
    def test_batch_and_leaves_round_trip(self):
        ids = self._add_documents(5)
        batch = self._coordinator().create_batch(ids, metadata={"trigger": "test"}, now=now)

        stored = self.batches.get(batch.id)
        self.assertEqual(stored.root_hash, batch.root_hash)
        self.assertEqual(stored.leaf_count, 5)
        self.assertEqual(stored.tree_height, 3)
        self.assertEqual(stored.metadata, {"trigger": "test"})
        self.assertEqual(stored.batch_timestamp, now)
        self.assertTrue(self.signer.verify_batch(stored))

        leaves = self.batches.find_leaves(batch.id)
        self.assertEqual([l.document_id for l in leaves], ids)
        self.assertEqual(leaves[4].proof_path[0].hash, leaves[4].leaf_hash)

    def test_latest_leaf(self):
        ids = self._add_documents(2)
        batch = self._coordinator().create_batch(ids, now=now)
        leaf = self.batches.get_latest_leaf(ids[1])
        self.assertEqual(leaf.batch_id, batch.id)
        self.assertEqual(leaf.leaf_index, 1)
        self.assertIsNone(self.batches.get_latest_leaf("missing"))

    def test_leaf_links_timestamp_proof(self):
        ids = self._add_documents(1)
        proof = HashChain(self.proofs, self.signer).append_proof(ids[0], _hash(ids[0]), now=now)
        self._coordinator().create_batch(ids, now=now + timedelta(seconds=1))
        self.assertEqual(self.batches.get_latest_leaf(ids[0]).timestamp_proof_id, proof.id)

    def test_failed_save_writes_nothing(self):
        ids = self._add_documents(2)
        batch = MerkleBatch(
            id="batch-dup",
            batch_timestamp=now,
            root_hash=_hash("root"),
            leaf_count=2,
            tree_height=1,
            batch_signature="sig",
        )
        # Both leaves claim index 0
        leaves = [
            LeafRecord(document_id=ids[0], leaf_hash=_hash(ids[0]), leaf_index=0, batch_id=batch.id),
            LeafRecord(document_id=ids[1], leaf_hash=_hash(ids[1]), leaf_index=0, batch_id=batch.id),
        ]
        with self.assertRaises(IntegrityError):
            self.batches.save_batch(batch, leaves)

        self.assertEqual(self.session.exec(select(MerkleBatchRow)).all(), [])
        self.assertEqual(self.session.exec(select(MerkleLeafRow)).all(), [])
        self.assertEqual(self.documents.count_pending(), 2)

    def test_document_sealed_in_one_batch_only(self):
        ids = self._add_documents(2)
        first = self._coordinator().create_batch(ids[:1], now=now)
        batch = MerkleBatch(
            id="batch-again",
            batch_timestamp=now,
            root_hash=_hash(ids[0]),
            leaf_count=1,
            tree_height=0,
            batch_signature="sig",
        )
        leaves = [LeafRecord(document_id=ids[0], leaf_hash=_hash(ids[0]), leaf_index=0, batch_id=batch.id)]
        with self.assertRaises(IntegrityError):
            self.batches.save_batch(batch, leaves)

        self.assertEqual([row.id for row in self.session.exec(select(MerkleBatchRow)).all()], [first.id])
        self.assertEqual(self.batches.get_latest_leaf(ids[0]).batch_id, first.id)

    def test_find_batched_document_ids(self):
        ids = self._add_documents(3)
        self._coordinator().create_batch(ids[:2], now=now)
        self.assertEqual(self.batches.find_batched_document_ids(ids), set(ids[:2]))
        self.assertEqual(self.batches.find_batched_document_ids([]), set())

    def test_rebatch_through_coordinator_rejected(self):
        ids = self._add_documents(2)
        coordinator = self._coordinator()
        coordinator.create_batch(ids, now=now)
        with self.assertRaises(EmptyBatchError):
            coordinator.create_batch(ids, now=now + timedelta(minutes=5))
        self.assertEqual(self.batches.statistics().total_batches, 1)

    def test_racing_batch_commit_rejected(self):
        ids = self._add_documents(2)
        first = self._coordinator().create_batch(ids, now=now)

        # A second writer that checked before the first commit landed
        racing = self._coordinator()
        with patch.object(self.batches, "find_batched_document_ids", return_value=set()):
            with self.assertRaises(PersistenceFailure):
                racing.create_batch(ids, now=now + timedelta(seconds=1))

        self.assertEqual([row.id for row in self.session.exec(select(MerkleBatchRow)).all()], [first.id])
        leaves = self.session.exec(select(MerkleLeafRow)).all()
        self.assertEqual(sorted(leaf.document_id for leaf in leaves), sorted(ids))
        self.assertEqual({leaf.batch_id for leaf in leaves}, {first.id})

    def test_recent_batches_newest_first(self):
        ids = self._add_documents(3)
        coordinator = self._coordinator()
        first = coordinator.create_batch(ids[:1], now=now)
        second = coordinator.create_batch(ids[1:2], now=now + timedelta(minutes=5))
        third = coordinator.create_batch(ids[2:], now=now + timedelta(minutes=10))
        recent = self.batches.find_recent(limit=2)
        self.assertEqual([b.id for b in recent], [third.id, second.id])
        self.assertNotIn(first.id, [b.id for b in recent])

    def test_batch_documents_include_file_names(self):
        ids = self._add_documents(3)
        batch = self._coordinator().create_batch(ids, now=now)
        documents = self.batches.find_batch_documents(batch.id)
        self.assertEqual([d.file_name for d in documents], [f"{i}.pdf" for i in ids])
        self.assertEqual([d.leaf_index for d in documents], [0, 1, 2])

    def test_statistics(self):
        empty = self.batches.statistics()
        self.assertEqual(empty.total_batches, 0)
        self.assertIsNone(empty.latest_batch_timestamp)

        ids = self._add_documents(6)
        coordinator = self._coordinator()
        coordinator.create_batch(ids[:2], now=now)
        coordinator.create_batch(ids[2:], now=now + timedelta(minutes=5))

        stats = self.batches.statistics()
        self.assertEqual(stats.total_batches, 2)
        self.assertEqual(stats.total_documents_batched, 6)
        self.assertAlmostEqual(stats.average_batch_size, 3.0)
        self.assertEqual(stats.latest_batch_timestamp, now + timedelta(minutes=5))


class TestTimestampProofRepository(RepositoryTestCase):
    def test_chain_ordering_and_latest(self):
        doc_id = self._add_documents(1)[0]
        chain = HashChain(self.proofs, self.signer)
        proofs = [
            chain.append_proof(doc_id, _hash(f"v{i}"), now=now + timedelta(minutes=i))
            for i in range(3)
        ]

        stored = self.proofs.get_chain(doc_id)
        self.assertEqual([p.id for p in stored], [p.id for p in proofs])
        self.assertTrue(HashChain.verify_chain(stored))
        self.assertEqual(self.proofs.get_latest(doc_id).id, proofs[-1].id)
        self.assertTrue(all(self.signer.verify_timestamp_proof(p) for p in stored))

    def test_equal_timestamps_latest_matches_chain_tail(self):
        doc_id = self._add_documents(1)[0]
        for proof_id in ("p-b", "p-a"):
            self.proofs.save(TimestampProof(
                id=proof_id, document_id=doc_id, proof_hash=_hash(proof_id), proof_timestamp=now,
                hmac_signature="sig", created_at=now,
            ))

        chain = self.proofs.get_chain(doc_id)
        self.assertEqual([p.id for p in chain], ["p-a", "p-b"])
        self.assertEqual(self.proofs.get_latest(doc_id).id, chain[-1].id)
        self.assertEqual(self.proofs.latest_ids_for([doc_id]), {doc_id: chain[-1].id})

    def test_same_instant_appends_chain_in_order(self):
        doc_id = self._add_documents(1)[0]
        chain = HashChain(self.proofs, self.signer)
        proofs = [chain.append_proof(doc_id, _hash(f"v{i}"), now=now) for i in range(3)]

        stored = self.proofs.get_chain(doc_id)
        self.assertEqual([p.id for p in stored], [p.id for p in proofs])
        self.assertTrue(HashChain.verify_chain(stored))
        self.assertEqual(self.proofs.get_latest(doc_id).id, proofs[-1].id)
        self.assertTrue(all(self.signer.verify_timestamp_proof(p) for p in stored))

    def test_get_and_metadata(self):
        doc_id = self._add_documents(1)[0]
        proof = TimestampProof(
            id="p1", document_id=doc_id, proof_hash=_hash("x"), proof_timestamp=now,
            hmac_signature="sig", metadata={"trigger": "upload"},
        )
        self.proofs.save(proof)
        stored = self.proofs.get("p1")
        self.assertEqual(stored.metadata, {"trigger": "upload"})
        self.assertEqual(stored.proof_timestamp, now)
        self.assertIsNone(self.proofs.get("missing"))

    def test_latest_ids_for(self):
        a, b, c = self._add_documents(3)
        chain = HashChain(self.proofs, self.signer)
        chain.append_proof(a, _hash("a1"), now=now)
        latest_a = chain.append_proof(a, _hash("a2"), now=now + timedelta(minutes=1))
        proof_b = chain.append_proof(b, _hash("b1"), now=now)
        self.assertEqual(self.proofs.latest_ids_for([a, b, c]), {a: latest_a.id, b: proof_b.id})
        self.assertEqual(self.proofs.latest_ids_for([]), {})


class TestSchema(unittest.TestCase):
    def test_timestamp_columns_are_timezone_aware(self):
        columns = [
            column
            for table in SQLModel.metadata.sorted_tables
            for column in table.columns
            if isinstance(column.type, DateTime)
        ]
        self.assertTrue(columns)
        naive = [f"{c.table.name}.{c.name}" for c in columns if not c.type.timezone]
        self.assertEqual(naive, [])

    def test_leaf_document_unique(self):
        unique_sets = {
            tuple(col.name for col in constraint.columns)
            for constraint in MerkleLeafRow.__table__.constraints
            if isinstance(constraint, UniqueConstraint)
        }
        self.assertIn(("document_id",), unique_sets)


class TestVerificationLogRepository(RepositoryTestCase):
    def test_proof_logs_newest_first(self):
        doc_id = self._add_documents(1)[0]
        proof = HashChain(self.proofs, self.signer).append_proof(doc_id, _hash("v1"), now=now)

        self.logs.log_proof_verification(proof.id, True, {"status": "VERIFIED"})
        self.logs.log_proof_verification(proof.id, False, {"status": "TAMPERED"}, verified_by="auditor")

        logs = self.logs.find_for_proof(proof.id)
        self.assertEqual(len(logs), 2)
        self.assertEqual({log.verification_method for log in logs}, {"hmac_hash_comparison"})
        self.assertEqual({log.verification_result for log in logs}, {True, False})
        self.assertEqual(self.logs.find_for_proof("other"), [])

    def test_batch_log(self):
        ids = self._add_documents(1)
        batch = self._coordinator().create_batch(ids, now=now)
        self.logs.log_batch_verification(batch.id, True, {"document_id": ids[0]})


if __name__ == "__main__":
    unittest.main()
