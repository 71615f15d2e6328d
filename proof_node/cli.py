from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from proof_node.errors import ProofEngineError
from proof_node.merkle.hasher import compute_file_hash


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="proof-node", description="Document proof node CLI")
    subparsers = parser.add_subparsers(dest="command")

    hash_parser = subparsers.add_parser("hash", help="Print the SHA-256 content hash of a file")
    hash_parser.add_argument("file", help="Path of the file to hash")

    init_parser = subparsers.add_parser("init-db", help="Create or migrate the proof schema")
    init_parser.add_argument("--reset", action="store_true", help="Drop every proof table first (destroys data)")

    batch_parser = subparsers.add_parser("batch", help="Seal pending documents into a Merkle batch now")
    batch_parser.add_argument("--max-batch-size", type=int, default=None, help="Cap on documents per batch")
    batch_parser.add_argument(
        "--force", action="store_true",
        help="Batch even when fewer documents are pending than the worker threshold",
    )

    verify_parser = subparsers.add_parser("verify", help="Verify a local file against a document's proof")
    verify_parser.add_argument("document_id", help="Document ID the file was registered under")
    verify_parser.add_argument("file", help="Local copy of the document")

    return parser


def _run_batch(max_batch_size: int | None, force: bool) -> int:
    from proof_node.config.runtime import RuntimeSettings
    from proof_node.workers.batch_worker import build_worker

    settings = RuntimeSettings.from_env()
    worker = build_worker(settings)
    if max_batch_size is not None:
        worker.max_batch_size = max_batch_size

    batch = worker.run_once(force=force)
    if batch is None:
        print("No batch created.")
        return 0
    print(f"Batch {batch.id}: {batch.leaf_count} documents, root {batch.root_hash}")
    return 0


def _run_verify(document_id: str, file: str) -> int:
    from proof_node.config.runtime import RuntimeSettings
    from proof_node.db import (
        DBMerkleBatchRepository,
        DBTimestampProofRepository,
        build_engine,
        create_session,
    )
    from proof_node.merkle.signing import HmacSigner
    from proof_node.services.verifier import ProofVerifier

    settings = RuntimeSettings.from_env()
    current_hash = compute_file_hash(Path(file))
    with create_session(build_engine(settings)) as session:
        verifier = ProofVerifier(
            batch_repository=DBMerkleBatchRepository(session),
            proof_repository=DBTimestampProofRepository(session),
            signer=HmacSigner.from_secret(settings.proof_signing_key),
        )
        result = verifier.verify_document_integrity(document_id, current_hash)

    print(json.dumps(result.to_dict(), indent=2, default=str))
    return 0 if result.valid else 1


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "hash":
        print(compute_file_hash(Path(args.file)))
        return 0

    if args.command is None:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )
    try:
        if args.command == "init-db":
            from proof_node.db.init_db import migrate, reset_db

            if args.reset:
                reset_db()
            else:
                migrate()
            return 0
        if args.command == "batch":
            return _run_batch(args.max_batch_size, args.force)
        if args.command == "verify":
            return _run_verify(args.document_id, args.file)
    except ProofEngineError as exc:
        print(f"ERROR: {exc}")
        return 2

    parser.print_help()
    return 1


def entrypoint() -> None:
    raise SystemExit(main())


if __name__ == "__main__":
    entrypoint()
