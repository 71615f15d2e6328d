#!/usr/bin/env python3
"""Standalone document proof verifier.

Usage:
    python verify_proof.py --node-url https://... --document-id DOC_ID --file report.pdf

Hashes the local file, fetches the document's Merkle leaf and proof path
from the proof node, and recomputes the batch root without trusting the
node's own verification.

Dependencies: requests (pip install requests)
"""
from __future__ import annotations

import argparse
import hashlib
import sys

import requests


def sha256_concat(left: str, right: str) -> str:
    return hashlib.sha256((left + right).encode("utf-8")).hexdigest()


def file_hash(path: str) -> str:
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest()


def recompute_root(leaf_hash: str, path: list[dict]) -> str | None:
    current = leaf_hash
    for step in path:
        if step["position"] == "right":
            current = sha256_concat(current, step["hash"])
        elif step["position"] == "left":
            current = sha256_concat(step["hash"], current)
        else:
            return None
    return current


def main() -> None:
    parser = argparse.ArgumentParser(description="Verify a document against its Merkle batch proof")
    parser.add_argument("--node-url", required=True, help="Proof node base URL")
    parser.add_argument("--document-id", required=True, help="Document ID to verify")
    parser.add_argument("--file", required=True, help="Local copy of the document")
    parser.add_argument("--api-key", default=None, help="API key, if the node requires one")
    parser.add_argument("--verbose", "-v", action="store_true", help="Show detailed output")
    args = parser.parse_args()

    base = args.node_url.rstrip("/")
    headers = {"X-API-Key": args.api_key} if args.api_key else {}

    # 1. Hash the local copy
    computed_hash = file_hash(args.file)
    if args.verbose:
        print(f"  computed_hash: {computed_hash}")

    # 2. Fetch the leaf and proof path
    print(f"Fetching Merkle leaf for {args.document_id}...")
    resp = requests.get(f"{base}/proofs/documents/{args.document_id}/leaf", headers=headers, timeout=30)
    if resp.status_code != 200:
        print(f"FAIL: Could not fetch leaf (HTTP {resp.status_code}): {resp.text}")
        sys.exit(1)

    leaf = resp.json()
    if args.verbose:
        print(f"  batch_id:   {leaf['batch_id']}")
        print(f"  leaf_index: {leaf['leaf_index']}")
        print(f"  path steps: {len(leaf['proof_path'])}")

    if computed_hash != leaf["leaf_hash"]:
        print("FAIL: Content hash mismatch!")
        print(f"  Expected (from leaf): {leaf['leaf_hash']}")
        print(f"  Computed (from file): {computed_hash}")
        print("  → The document has been modified since it was batched.")
        sys.exit(1)

    print("✓ Content hash matches")

    # 3. Fetch the batch root independently of the leaf response
    resp = requests.get(f"{base}/proofs/batches/{leaf['batch_id']}", headers=headers, timeout=30)
    if resp.status_code != 200:
        print(f"FAIL: Could not fetch batch (HTTP {resp.status_code})")
        sys.exit(1)
    batch = resp.json()

    root = recompute_root(computed_hash, leaf["proof_path"])
    if root is not None and root == batch["root_hash"]:
        print(f"✓ Merkle proof valid: document is leaf {leaf['leaf_index']} of {batch['leaf_count']}")
    else:
        print("FAIL: Merkle proof invalid, path does not lead to the batch root")
        print(f"  Expected: {batch['root_hash']}")
        print(f"  Got:      {root}")
        sys.exit(1)

    print()
    print(f"PASS: Document was sealed in batch {batch['id']} at {batch['batch_timestamp']}.")


if __name__ == "__main__":
    main()
