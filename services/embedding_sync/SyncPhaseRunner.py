"""One sync phase: reconcile every record of one source kind with the index."""

import asyncio
from enum import Enum

from services.embedding_sync.ChangeDetector import needs_update
from services.embedding_sync.EmbeddingLocator import EmbeddingLocator
from services.embedding_sync.IndexClient import IndexClient
from services.embedding_sync.SourceCollectors import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PROCESSING,
    SourceCollector,
)
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import Embedding, SourceRecord, SyncStats


class RecordOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    SKIPPED = "skipped"


class RecordFailure(RuntimeError):
    """A record could not be synced although no collaborator raised (no text, rejected upsert)."""


class SyncPhaseRunner:
    """Runs change detection, stale deletion and re-embedding for one source kind."""

    def __init__(self, helper_config: HelperConfig, index: IndexClient, locator: EmbeddingLocator) -> None:
        self.logging = helper_config.get_logger()
        self._index = index
        self._locator = locator

    ##########################################
    ################# PHASE ##################
    ##########################################

    async def run(
        self,
        collector: SourceCollector,
        organization_id: str,
        records: list[SourceRecord],
        snapshot: dict[str, list[Embedding]] | None = None,
    ) -> SyncStats:
        """Sync all records of one kind.

        Records are processed in batches of collector.batch_size; records of a
        batch run concurrently and the next batch starts only once every
        record of the current one has settled. A failing record is counted
        and logged without affecting its siblings.

        Args:
            collector (SourceCollector): The collector for this kind.
            organization_id (str): Owning organization.
            records (list[SourceRecord]): Current authoritative records of this kind.
            snapshot (dict[str, list[Embedding]] | None): Pre-fetched embeddings by sourceId,
                used to skip fresh records without a per-record lookup.

        Returns:
            SyncStats: Counters for this phase.
        """
        stats = SyncStats(total=len(records))
        kind = collector.source_type.value
        snapshot = snapshot or {}

        for start in range(0, len(records), collector.batch_size):
            batch = records[start:start + collector.batch_size]
            results = await asyncio.gather(
                *[self._sync_record(collector, record, snapshot) for record in batch],
                return_exceptions=True,
            )
            for record, result in zip(batch, results):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    stats.failed += 1
                    self.logging.error("Failed to sync %s %s: %s", kind, record.id, result)
                    continue
                outcome, last_id = result
                if outcome == RecordOutcome.CREATED:
                    stats.created += 1
                elif outcome == RecordOutcome.UPDATED:
                    stats.updated += 1
                else:
                    stats.skipped += 1
                if last_id:
                    stats.last_upserted_embedding_id = last_id

        self.logging.info(
            "Synced %s for organization %s: %d created, %d updated, %d skipped, %d failed (of %d)",
            kind, organization_id, stats.created, stats.updated, stats.skipped, stats.failed, stats.total,
        )
        return stats

    ##########################################
    ################ RECORD ##################
    ##########################################

    async def _sync_record(
        self,
        collector: SourceCollector,
        record: SourceRecord,
        snapshot: dict[str, list[Embedding]],
    ) -> tuple[RecordOutcome, str | None]:
        existing = self._from_snapshot(collector, record, snapshot)
        located = False
        if not existing:
            # the snapshot is capped; a miss is confirmed with a targeted lookup
            existing = await self._locate(collector, record)
            located = True

        if not collector.force_refresh(record) and not needs_update(existing, record.updated_at):
            return RecordOutcome.SKIPPED, None

        if not located:
            # a snapshot hit may be missing chunks, delete needs the full set
            existing = self._union(existing, await self._locate(collector, record))
        return await self.replace(collector, record, existing)

    async def replace(
        self,
        collector: SourceCollector,
        record: SourceRecord,
        existing: list[Embedding],
    ) -> tuple[RecordOutcome, str | None]:
        """Replace a record's stored embeddings with freshly derived ones.

        The new chunk set is derived first so a failure to load or chunk the
        text leaves the old embeddings in place; old chunks are then deleted
        wholesale before the new ones are written. A record whose text became
        empty only loses its old chunks.

        Returns:
            tuple[RecordOutcome, str | None]: CREATED, UPDATED or SKIPPED (no content) and the last written embedding id.

        Raises:
            Exception: Any failure of this record; the caller counts it.
        """
        await collector.mark_status(record, STATUS_PROCESSING)
        try:
            text = await collector.load_text(record)
            items = collector.build_items(record, text)
            if not items:
                if collector.require_content:
                    raise RecordFailure(f"{collector.source_type.value} '{record.id}' has no content to embed")
                if existing:
                    # nothing left to embed, the old chunks must not outlive the content
                    await self._index.delete_many([embedding.id for embedding in existing])
                await collector.mark_status(record, STATUS_COMPLETED)
                return RecordOutcome.SKIPPED, None

            if existing:
                await self._index.delete_many([embedding.id for embedding in existing])

            report = await self._index.upsert_many(items)
            if report.failed_batches:
                raise RecordFailure(
                    f"{report.failed_batches} upsert batch(es) failed for {collector.source_type.value} '{record.id}': "
                    f"{'; '.join(report.errors)}"
                )
        except Exception:
            await collector.mark_status(record, STATUS_FAILED)
            raise

        await collector.mark_status(record, STATUS_COMPLETED)
        outcome = RecordOutcome.UPDATED if existing else RecordOutcome.CREATED
        return outcome, report.last_written_id

    def _from_snapshot(
        self,
        collector: SourceCollector,
        record: SourceRecord,
        snapshot: dict[str, list[Embedding]],
    ) -> list[Embedding]:
        return [
            embedding
            for embedding in snapshot.get(record.id, [])
            if embedding.metadata.source_type == collector.source_type.value
        ]

    async def _locate(self, collector: SourceCollector, record: SourceRecord) -> list[Embedding]:
        return await self._locator.locate(
            record.id, collector.source_type, record.organization_id, document_name=record.label,
        )

    @staticmethod
    def _union(first: list[Embedding], second: list[Embedding]) -> list[Embedding]:
        merged = {embedding.id: embedding for embedding in first}
        for embedding in second:
            merged.setdefault(embedding.id, embedding)
        return list(merged.values())
