"""Capability wrapper around the optional vector index.

The engine never talks to a RAG client directly. IndexClient holds the
client as an optional capability and is the one place that decides what
each operation means when no index is configured: reads return empty
results, writes are no-ops.
"""

from pydantic import BaseModel

from shared.clients.embed.EmbedClientInterface import EmbedClientInterface
from shared.clients.rag.RAGClientInterface import RAGClientInterface
from shared.clients.rag.models.VectorPoint import VectorMatch, VectorPoint
from shared.errors import NotConfiguredError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import ChunkItem

UPSERT_BATCH_SIZE = 100   # max vectors per upsert call
DELETE_BATCH_SIZE = 100   # max ids per delete call


class UpsertReport(BaseModel):
    """What an upsert_many call actually wrote."""

    written: int = 0
    failed_batches: int = 0
    skipped_empty: int = 0
    last_written_id: str | None = None
    errors: list[str] = []


class IndexClient:
    """The vector index as seen by the sync engine."""

    def __init__(
        self,
        helper_config: HelperConfig,
        rag_client: RAGClientInterface | None,
        embed_client: EmbedClientInterface | None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._rag = rag_client
        self._embed = embed_client

    @property
    def available(self) -> bool:
        return self._rag is not None

    @property
    def embedder(self) -> EmbedClientInterface:
        """The embedding provider.

        Raises:
            NotConfiguredError: If no embedding provider is configured.
        """
        if self._embed is None:
            raise NotConfiguredError("No embedding provider configured.")
        return self._embed

    def get_max_top_k(self) -> int:
        return self._rag.get_max_top_k() if self._rag is not None else 0

    ##########################################
    ################ WRITES ##################
    ##########################################

    async def upsert_many(self, items: list[ChunkItem]) -> UpsertReport:
        """Embed and write chunk items.

        Items with blank text are dropped. Vectors are written in batches; a
        failed batch is logged and reported without aborting the remaining ones.

        Args:
            items (list[ChunkItem]): The chunks to write.

        Returns:
            UpsertReport: Counts of what was written and what failed.

        Raises:
            NotConfiguredError / TransientProviderError: If embedding generation fails.
        """
        report = UpsertReport()
        if self._rag is None:
            self.logging.debug("Vector index not configured, skipping upsert of %d items.", len(items))
            return report

        items = [item for item in items if item.text and item.text.strip()]
        if not items:
            return report

        vectors = await self.embedder.embed_many([item.text for item in items])
        points: list[VectorPoint] = []
        for item, vector in zip(items, vectors):
            if not vector:
                report.skipped_empty += 1
                continue
            points.append(VectorPoint(id=item.id, vector=vector, metadata=item.metadata.to_payload()))

        for start in range(0, len(points), UPSERT_BATCH_SIZE):
            batch = points[start:start + UPSERT_BATCH_SIZE]
            try:
                await self._rag.do_upsert(batch)
            except Exception as exc:
                report.failed_batches += 1
                report.errors.append(str(exc))
                self.logging.error(
                    "Upsert of %d vectors (first id %s) failed: %s", len(batch), batch[0].id, exc
                )
                continue
            report.written += len(batch)
            report.last_written_id = batch[-1].id
        return report

    async def delete_many(self, ids: list[str]) -> int:
        """Delete vectors by id, best-effort.

        Failures are logged and treated as "may not have existed"; they never
        propagate. Returns the number of ids in batches the index accepted.
        """
        if self._rag is None or not ids:
            return 0
        deleted = 0
        for start in range(0, len(ids), DELETE_BATCH_SIZE):
            batch = ids[start:start + DELETE_BATCH_SIZE]
            try:
                await self._rag.do_delete(batch)
            except Exception as exc:
                self.logging.warning("Failed to delete %d embeddings (may not exist): %s", len(batch), exc)
                continue
            deleted += len(batch)
        return deleted

    ##########################################
    ################# READS ##################
    ##########################################

    async def query(self, vector: list[float], top_k: int, filters: dict[str, str] | None = None, include_vectors: bool = False) -> list[VectorMatch]:
        """Similarity query with metadata. Empty without an index; provider errors propagate."""
        if self._rag is None or not vector:
            return []
        return await self._rag.do_query(vector, top_k, include_metadata=True, include_vectors=include_vectors, filters=filters)

    async def fetch(self, ids: list[str], include_vectors: bool = False) -> list[VectorMatch | None]:
        """Fetch by id. All None without an index; provider errors propagate."""
        if self._rag is None:
            return [None for _ in ids]
        return await self._rag.do_fetch(ids, include_vectors=include_vectors)
