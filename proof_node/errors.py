"""Errors raised by the proof engine.

Verification mismatches are not errors: they come back as a
``VerificationResult`` with status ``TAMPERED``. Exceptions are reserved for
calls that could not run at all.
"""
from __future__ import annotations


class ProofEngineError(Exception):
    """Base class for proof engine failures."""


class EmptyBatchError(ProofEngineError, ValueError):
    """A batch or tree was requested over zero documents."""


class InvalidHashError(ProofEngineError, ValueError):
    """A value that should be a lowercase 64-char hex digest is not."""


class ChainLinkError(ProofEngineError):
    """A caller-supplied previous proof hash is not the latest proof of record."""


class PersistenceFailure(ProofEngineError):
    """The store rejected a write or did not answer in time."""
