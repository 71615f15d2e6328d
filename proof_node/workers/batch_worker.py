"""Batch worker: periodically seals pending documents into Merkle batches."""
from __future__ import annotations

import asyncio
import logging
from contextlib import contextmanager, nullcontext
from typing import Callable, ContextManager, Iterator

from sqlalchemy.engine import Engine
from sqlmodel import Session

from proof_node.config.runtime import RuntimeSettings
from proof_node.db import (
    DBDocumentRepository,
    DBMerkleBatchRepository,
    DBTimestampProofRepository,
    build_engine,
    create_session,
)
from proof_node.entities.proof import MerkleBatch
from proof_node.merkle.signing import HmacSigner
from proof_node.services.batch_coordinator import BatchCoordinator


def configure_logging() -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
        force=True,
    )


class BatchWorker:
    """Seals pending documents on an interval.

    Each pass runs against its own coordinator from ``coordinator_scope``, so a
    pass that dies mid-transaction cannot poison the next one. A fixed
    ``coordinator`` is used as-is when no scope is given.
    """

    def __init__(
        self,
        coordinator: BatchCoordinator | None = None,
        interval_seconds: int = 300,
        min_pending_documents: int = 10,
        max_batch_size: int = 100,
        coordinator_scope: Callable[[], ContextManager[BatchCoordinator]] | None = None,
    ):
        if coordinator is None and coordinator_scope is None:
            raise ValueError("BatchWorker needs a coordinator or a coordinator_scope")
        self.coordinator = coordinator
        self.coordinator_scope = coordinator_scope
        self.interval_seconds = interval_seconds
        self.min_pending_documents = min_pending_documents
        self.max_batch_size = max_batch_size
        self.logger = logging.getLogger(__name__)
        self.stop_event = asyncio.Event()
        self._tick_lock = asyncio.Lock()

    async def run(self) -> None:
        self.logger.info(
            "batch worker started (interval=%ds, min_pending=%d, max_batch=%d)",
            self.interval_seconds, self.min_pending_documents, self.max_batch_size,
        )
        while not self.stop_event.is_set():
            try:
                await self.tick()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.exception("batch tick error: %s", exc)
            try:
                await asyncio.wait_for(self.stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> MerkleBatch | None:
        """Run one batching pass unless another one is still in flight."""
        if self._tick_lock.locked():
            self.logger.warning("previous batch tick still in flight, skipping")
            return None
        async with self._tick_lock:
            return await asyncio.to_thread(self.run_once)

    def _open_coordinator(self) -> ContextManager[BatchCoordinator]:
        if self.coordinator_scope is not None:
            return self.coordinator_scope()
        return nullcontext(self.coordinator)

    def run_once(self, force: bool = False) -> MerkleBatch | None:
        with self._open_coordinator() as coordinator:
            pending = coordinator.count_pending_documents()
            if not force and pending < self.min_pending_documents:
                self.logger.info(
                    "%d pending documents (< %d), skipping batch",
                    pending, self.min_pending_documents,
                )
                return None
            return coordinator.create_batch_for_pending_documents(self.max_batch_size)

    async def shutdown(self) -> None:
        self.stop_event.set()


def build_coordinator(session: Session, settings: RuntimeSettings, signer: HmacSigner) -> BatchCoordinator:
    return BatchCoordinator(
        document_repository=DBDocumentRepository(session),
        batch_repository=DBMerkleBatchRepository(session),
        proof_repository=DBTimestampProofRepository(session),
        signer=signer,
        max_batch_size=settings.batch_max_size,
        persistence_retries=settings.persistence_retries,
        retry_backoff_seconds=settings.persistence_retry_backoff_seconds,
    )


def build_worker(settings: RuntimeSettings | None = None, engine: Engine | None = None) -> BatchWorker:
    settings = settings or RuntimeSettings.from_env()
    engine = engine or build_engine(settings)
    signer = HmacSigner.from_secret(settings.proof_signing_key)

    @contextmanager
    def coordinator_scope() -> Iterator[BatchCoordinator]:
        with create_session(engine) as session:
            yield build_coordinator(session, settings, signer)

    return BatchWorker(
        interval_seconds=settings.batch_interval_seconds,
        min_pending_documents=settings.batch_min_pending_documents,
        max_batch_size=settings.batch_max_size,
        coordinator_scope=coordinator_scope,
    )


async def main() -> None:
    configure_logging()
    logging.getLogger(__name__).info("proof node batch worker bootstrap")
    worker = build_worker()
    await worker.run()


if __name__ == "__main__":
    asyncio.run(main())
