"""Bounded retries around store writes."""
from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from sqlalchemy.exc import OperationalError, SQLAlchemyError

from proof_node.errors import PersistenceFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")


def with_retries(
    operation: Callable[[], T],
    *,
    description: str,
    retries: int = 3,
    backoff_seconds: float = 1.0,
) -> T:
    """Run ``operation``, retrying transient database errors.

    Connection drops and timeouts (``OperationalError``) are retried up to
    ``retries`` times. Anything else the store rejects fails immediately.
    Both end as ``PersistenceFailure``.
    """
    attempts = max(1, retries)
    for attempt in range(attempts):
        try:
            return operation()
        except OperationalError as exc:
            logger.error("%s attempt %d/%d failed: %s", description, attempt + 1, attempts, exc)
            if attempt < attempts - 1:
                time.sleep(backoff_seconds)
            else:
                raise PersistenceFailure(f"{description} failed after {attempts} attempts") from exc
        except SQLAlchemyError as exc:
            logger.error("%s rejected by store: %s", description, exc)
            raise PersistenceFailure(f"{description} rejected by store: {exc}") from exc
    raise PersistenceFailure(f"{description} failed")
