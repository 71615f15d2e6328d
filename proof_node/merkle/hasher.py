"""Content hashing and Merkle node combination."""
from __future__ import annotations

import hashlib
import re
from pathlib import Path

from proof_node.errors import InvalidHashError

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")
_CHUNK_SIZE = 1024 * 1024


def compute_content_hash(data: bytes) -> str:
    """SHA-256 of the raw document bytes, as lowercase hex."""
    return hashlib.sha256(data).hexdigest()


def compute_file_hash(path: str | Path) -> str:
    """Same digest as ``compute_content_hash`` but streamed from disk."""
    digest = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def sha256_concat(left: str, right: str) -> str:
    """Hash two hex-encoded hashes together: SHA-256(left + right)."""
    combined = left + right
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()


def is_valid_hash(value: object) -> bool:
    return isinstance(value, str) and _HEX_DIGEST.match(value) is not None


def require_hash(value: object, name: str = "hash") -> str:
    if not is_valid_hash(value):
        raise InvalidHashError(f"{name} must be a 64-character lowercase hex digest, got {value!r}")
    return value  # type: ignore[return-value]
