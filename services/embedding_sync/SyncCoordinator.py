"""Per-organization entry point of the embedding sync engine.

A full sync runs the phases strictly in order: policies, context entries,
manual answers, knowledge-base documents, orphan reaping, verification.
Concurrent requests for the same organization share one run.
"""

import asyncio
from typing import Awaitable, Callable

from tenacity import AsyncRetrying, RetryError, retry_if_result, stop_after_attempt, wait_incrementing

from services.embedding_sync.ConsistencyVerifier import ConsistencyVerifier
from services.embedding_sync.EmbeddingLocator import EmbeddingLocator
from services.embedding_sync.IndexClient import IndexClient
from services.embedding_sync.OrphanReaper import OrphanReaper
from services.embedding_sync.SourceCollectors import SourceCollector
from services.embedding_sync.SyncLockRegistry import SyncLockRegistry
from services.embedding_sync.SyncPhaseRunner import RecordOutcome, SyncPhaseRunner
from shared.errors import SourceNotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import (
    DeleteResult,
    Embedding,
    OrganizationSyncStats,
    SourceType,
    SyncRecordResult,
)

DELETE_VERIFY_RETRIES = 3        # extra delete rounds for documents whose chunks survive
DELETE_VERIFY_DELAY_MS = 2000    # grows by this much every round

NOT_CONFIGURED = "Vector index not configured"


class SyncCoordinator:
    """Orchestrates full and single-record syncs for many organizations."""

    def __init__(
        self,
        helper_config: HelperConfig,
        index: IndexClient,
        collectors: list[SourceCollector],
        locator: EmbeddingLocator | None = None,
        lock_registry: SyncLockRegistry | None = None,
        verifier: ConsistencyVerifier | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._index = index
        self._collectors = collectors
        self._collectors_by_type = {collector.source_type: collector for collector in collectors}
        self._locator = locator or EmbeddingLocator(helper_config, index)
        self._runner = SyncPhaseRunner(helper_config, index, self._locator)
        self._reaper = OrphanReaper(helper_config, index, self._locator)
        self._verifier = verifier or ConsistencyVerifier(helper_config, index, sleep=sleep)
        self._locks = lock_registry or SyncLockRegistry(helper_config)
        self._sleep = sleep

    @property
    def locks(self) -> SyncLockRegistry:
        return self._locks

    ##########################################
    ############### FULL SYNC ################
    ##########################################

    async def sync_organization(self, organization_id: str) -> OrganizationSyncStats | None:
        """Reconcile the index with all current source records of an organization.

        Single-flight per organization: a call arriving while a sync for the
        same organization runs awaits that sync and gets its result. The
        lock is released however the sync ends.

        Args:
            organization_id (str): The organization to sync.

        Returns:
            OrganizationSyncStats | None: Aggregated stats, None for a blank organization id.

        Raises:
            Exception: If a source kind cannot be listed. Per-record failures only show up in the stats.
        """
        if not organization_id or not organization_id.strip():
            self.logging.warning("Invalid organization id provided for sync: %r", organization_id)
            return None
        return await self._locks.run_once(organization_id, lambda: self._perform_sync(organization_id))

    async def _perform_sync(self, organization_id: str) -> OrganizationSyncStats:
        stats = OrganizationSyncStats(organization_id=organization_id, index_available=self._index.available)
        if not self._index.available:
            self.logging.warning("Vector index not configured, skipping sync for organization %s", organization_id)
            return stats

        self.logging.info("Starting incremental embeddings sync for organization %s", organization_id, extra={"organization_id": organization_id})
        try:
            snapshot = await self._locator.locate_all_for_organization(organization_id)
            self.logging.info(
                "Fetched existing embeddings for organization %s: %d sources", organization_id, len(snapshot),
            )

            last_upserted: str | None = None
            for collector in self._collectors:
                records = await collector.list_records(organization_id)
                phase = await self._runner.run(collector, organization_id, records, snapshot)
                stats.phases[collector.source_type.value] = phase
                last_upserted = phase.last_upserted_embedding_id or last_upserted

            # re-list so records created while the phases ran are not reaped
            current_ids: dict[SourceType, set[str]] = {}
            for collector in self._collectors:
                current_ids[collector.source_type] = {record.id for record in await collector.list_records(organization_id)}
            stats.orphans_deleted = await self._reaper.reap(organization_id, current_ids)

            if last_upserted:
                stats.verification = await self._verifier.verify(last_upserted, organization_id)
        except Exception as exc:
            self.logging.error("Failed to sync embeddings for organization %s: %s", organization_id, exc, extra={"organization_id": organization_id})
            raise

        totals = stats.totals
        self.logging.info(
            "Embeddings sync completed for organization %s: %d created, %d updated, %d skipped, %d failed, %d orphans deleted",
            organization_id, totals.created, totals.updated, totals.skipped, totals.failed, stats.orphans_deleted,
            extra={"organization_id": organization_id},
        )
        return stats

    ##########################################
    ############# SINGLE RECORD ##############
    ##########################################

    async def sync_single_record(self, source_type: SourceType | str, source_id: str, organization_id: str) -> SyncRecordResult:
        """Embed one new or edited record right away, outside a full sync.

        The record's embeddings are always replaced. The first written id is
        verified for searchability before returning.

        Raises:
            SourceNotFoundError: If the record does not exist in the source store.
        """
        if not self._index.available:
            return SyncRecordResult(success=False, error=NOT_CONFIGURED)

        collector = self._collector(source_type)
        record = await collector.get_record(source_id, organization_id)
        try:
            existing = await self._locator.locate(
                record.id, collector.source_type, organization_id, document_name=record.label,
            )
            outcome, _ = await self._runner.replace(collector, record, existing)
        except Exception as exc:
            self.logging.error("Failed to sync %s %s: %s", collector.source_type.value, source_id, exc)
            return SyncRecordResult(success=False, error=str(exc))
        if outcome == RecordOutcome.SKIPPED:
            return SyncRecordResult(success=False, error=f"{collector.source_type.value} '{source_id}' has no content to embed")

        embedding_id = collector.embedding_id(record.id, 0)
        verification = await self._verifier.verify(embedding_id, organization_id)
        self.logging.info(
            "Synced %s %s for organization %s (verified: %s)",
            collector.source_type.value, source_id, organization_id, verification.success,
        )
        return SyncRecordResult(success=True, embedding_id=embedding_id, verified=verification.success)

    async def delete_source_embeddings(self, source_type: SourceType | str, source_id: str, organization_id: str) -> DeleteResult:
        """Delete every embedding stored for one source record.

        Knowledge-base documents have many chunks and discovery is
        approximate, so their deletion is re-checked: while the locator
        still finds chunks they are deleted again, up to
        DELETE_VERIFY_RETRIES rounds with a growing delay.
        """
        if not self._index.available:
            return DeleteResult(success=False, error=NOT_CONFIGURED)

        source_type = SourceType(source_type)
        try:
            document_name = await self._document_name(source_type, source_id, organization_id)
            existing = await self._locator.locate(source_id, source_type, organization_id, document_name=document_name)
            if not existing:
                self.logging.info("No embeddings found for %s %s", source_type.value, source_id)
                return DeleteResult(success=True, deleted_count=0)

            deleted = await self._index.delete_many([embedding.id for embedding in existing])
            if source_type == SourceType.KNOWLEDGE_BASE_DOCUMENT:
                deleted += await self._delete_remaining(source_id, organization_id, document_name)
        except Exception as exc:
            self.logging.error("Failed to delete embeddings of %s %s: %s", source_type.value, source_id, exc)
            return DeleteResult(success=False, error=str(exc))

        self.logging.info("Deleted %d embeddings of %s %s", deleted, source_type.value, source_id)
        return DeleteResult(success=True, deleted_count=deleted)

    async def _delete_remaining(self, source_id: str, organization_id: str, document_name: str | None) -> int:
        source_type = SourceType.KNOWLEDGE_BASE_DOCUMENT
        deleted = 0
        rounds = 0
        remaining: list[Embedding] = []

        async def sweep() -> list[Embedding]:
            # deletes what the previous round still found, then looks again
            nonlocal deleted, rounds, remaining
            if remaining:
                rounds += 1
                self.logging.warning(
                    "%d embeddings of document %s survived deletion, retry %d/%d",
                    len(remaining), source_id, rounds, DELETE_VERIFY_RETRIES,
                )
                deleted += await self._index.delete_many([embedding.id for embedding in remaining])
            remaining = await self._locator.locate(source_id, source_type, organization_id, document_name=document_name)
            return remaining

        delay = DELETE_VERIFY_DELAY_MS / 1000
        retrying = AsyncRetrying(
            stop=stop_after_attempt(DELETE_VERIFY_RETRIES + 1),
            wait=wait_incrementing(start=delay, increment=delay),
            retry=retry_if_result(bool),
            sleep=self._sleep,
        )
        try:
            await retrying(sweep)
        except RetryError:
            self.logging.error(
                "Embeddings of document %s still present after %d retries: %s",
                source_id, DELETE_VERIFY_RETRIES, [embedding.id for embedding in remaining],
            )
        return deleted

    async def _document_name(self, source_type: SourceType, source_id: str, organization_id: str) -> str | None:
        """Best-effort lookup of a document's name, used as an extra locator probe."""
        if source_type != SourceType.KNOWLEDGE_BASE_DOCUMENT:
            return None
        try:
            record = await self._collector(source_type).get_record(source_id, organization_id)
        except SourceNotFoundError:
            return None
        except Exception as exc:
            self.logging.warning("Could not fetch name of document %s, proceeding without it: %s", source_id, exc)
            return None
        return record.label

    def _collector(self, source_type: SourceType | str) -> SourceCollector:
        source_type = SourceType(source_type)
        collector = self._collectors_by_type.get(source_type)
        if collector is None:
            raise ValueError(f"No collector registered for source type '{source_type.value}'")
        return collector
