"""Garbage collection of embeddings whose source record is gone."""

from services.embedding_sync.EmbeddingLocator import EmbeddingLocator
from services.embedding_sync.IndexClient import IndexClient
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import Embedding, SourceType


class OrphanReaper:
    """Deletes embeddings whose (sourceType, sourceId) has no current source record."""

    def __init__(self, helper_config: HelperConfig, index: IndexClient, locator: EmbeddingLocator) -> None:
        self.logging = helper_config.get_logger()
        self._index = index
        self._locator = locator

    async def reap(self, organization_id: str, current_ids: dict[SourceType, set[str]]) -> int:
        """Delete orphaned embeddings of an organization.

        Discovery goes through locate_all_for_organization, so it only sees
        what one broad probe can reach. Orphans outside that window survive
        until a later run surfaces them.

        Args:
            organization_id (str): The organization to clean up.
            current_ids (dict[SourceType, set[str]]): Current source ids per kind, freshly listed.

        Returns:
            int: Number of embeddings deleted.
        """
        if not self._index.available:
            return 0

        discovered = await self._locator.locate_all_for_organization(organization_id)
        known = {SourceType(source_type).value: ids for source_type, ids in current_ids.items()}

        orphan_ids: list[str] = []
        for source_id, embeddings in discovered.items():
            # ids are only unique per kind, so one group may mix kinds
            for source_type, group in self._by_type(embeddings).items():
                if source_id in known.get(source_type, set()):
                    continue
                self.logging.info(
                    "Orphaned %s %s: removing %d embeddings", source_type, source_id, len(group),
                )
                orphan_ids.extend(embedding.id for embedding in group)

        if not orphan_ids:
            self.logging.debug("No orphaned embeddings found for organization %s", organization_id)
            return 0

        deleted = await self._index.delete_many(orphan_ids)
        self.logging.info("Deleted %d orphaned embeddings for organization %s", deleted, organization_id)
        return deleted

    @staticmethod
    def _by_type(embeddings: list[Embedding]) -> dict[str, list[Embedding]]:
        grouped: dict[str, list[Embedding]] = {}
        for embedding in embeddings:
            grouped.setdefault(embedding.metadata.source_type, []).append(embedding)
        return grouped
