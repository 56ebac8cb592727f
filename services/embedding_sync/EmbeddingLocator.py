"""Discovery of the embeddings already stored for a source record.

The vector index only answers approximate nearest-neighbour queries, so
there is no way to ask it for "every vector with sourceId X". The locator
issues several diversified similarity probes instead, keeps only hits whose
metadata matches the source exactly, and unions the results. This is a
best-effort search: a chunk that is dissimilar to every probe can stay
undiscovered.
"""

import re

from pydantic import ValidationError

from services.embedding_sync.IndexClient import IndexClient
from shared.clients.rag.models.VectorPoint import VectorMatch
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import Embedding, EmbeddingMetadata, SourceType

PROBE_TOP_K = 100                # results requested per probe
DOCUMENT_BOOTSTRAP_CHUNKS = 3    # found chunks re-used as probes for documents
CONTENT_PROBE_CHARS = 200        # prefix length of a chunk's content used as probe text

# boilerplate that tends to resemble arbitrary document text
GENERIC_DOCUMENT_PROBES = (
    "document content",
    "this document describes the policy and procedure",
    "section introduction overview scope purpose",
    "table of contents",
)

_CHUNK_SUFFIX = re.compile(r"_chunk(\d+)$")


def chunk_index(embedding_id: str) -> int:
    """Return the chunk number encoded in an embedding id, 0 for single-record ids."""
    match = _CHUNK_SUFFIX.search(embedding_id)
    return int(match.group(1)) if match else 0


def to_embedding(match: VectorMatch) -> Embedding | None:
    """Convert an index hit into an Embedding, or None if its metadata is not ours."""
    if not match.metadata:
        return None
    try:
        metadata = EmbeddingMetadata.model_validate(match.metadata)
    except ValidationError:
        return None
    return Embedding(id=match.id, metadata=metadata, vector=match.vector or [])


class EmbeddingLocator:
    """Finds existing embeddings of a source, or of a whole organization."""

    def __init__(self, helper_config: HelperConfig, index: IndexClient) -> None:
        self.logging = helper_config.get_logger()
        self._index = index

    ##########################################
    ############## SINGLE SOURCE #############
    ##########################################

    async def locate(
        self,
        source_id: str,
        source_type: SourceType,
        organization_id: str,
        document_name: str | None = None,
    ) -> list[Embedding]:
        """Find all embeddings stored for one source record.

        Never raises. A failing probe is logged and the remaining probes still
        run, so the result may be partial.

        Args:
            source_id (str): ID of the source record.
            source_type (SourceType): Kind of the source record.
            organization_id (str): Owning organization.
            document_name (str | None): Display name of a knowledge-base document, used as an extra probe.

        Returns:
            list[Embedding]: Matching embeddings, deduplicated and ordered by chunk index.
        """
        if not self._index.available:
            return []

        source_type = SourceType(source_type)
        found: dict[str, Embedding] = {}
        filters = {
            "organizationId": organization_id,
            "sourceType": source_type.value,
            "sourceId": source_id,
        }

        probes = [organization_id, source_id, f"{organization_id} {source_id}"]
        is_document = source_type == SourceType.KNOWLEDGE_BASE_DOCUMENT
        if is_document and document_name:
            probes.append(document_name)

        for probe in probes:
            await self._probe(probe, filters, found)

        if is_document:
            await self._bootstrap_from_found(filters, found)
            for probe in GENERIC_DOCUMENT_PROBES:
                await self._probe(probe, filters, found)

        self.logging.debug(
            "Located %d embeddings for %s %s (organization %s)",
            len(found), source_type.value, source_id, organization_id,
        )
        return sorted(found.values(), key=lambda embedding: chunk_index(embedding.id))

    async def _probe(self, text: str, filters: dict[str, str], found: dict[str, Embedding]) -> None:
        """Run one similarity probe and merge exact metadata matches into found."""
        if not text or not text.strip():
            return
        try:
            vector = await self._index.embedder.embed(text)
            matches = await self._index.query(vector, PROBE_TOP_K, filters=filters)
        except Exception as exc:
            self.logging.warning("Locator probe '%s' failed: %s", text[:50], exc)
            return

        for match in matches:
            embedding = to_embedding(match)
            if embedding is not None and self._matches(embedding, filters):
                found[embedding.id] = embedding

    async def _bootstrap_from_found(self, filters: dict[str, str], found: dict[str, Embedding]) -> None:
        """Probe again with the content and name of the first chunks already found.

        Chunks of a long document can be semantically far apart; using found
        chunks as probe texts reaches neighbours the id-based probes miss.
        """
        seed_ids = [embedding.id for embedding in sorted(found.values(), key=lambda e: chunk_index(e.id))]
        seed_ids = seed_ids[:DOCUMENT_BOOTSTRAP_CHUNKS]
        if not seed_ids:
            return
        try:
            seeds = await self._index.fetch(seed_ids)
        except Exception as exc:
            self.logging.warning("Locator could not fetch seed chunks %s: %s", seed_ids, exc)
            return

        for seed in seeds:
            embedding = to_embedding(seed) if seed is not None else None
            if embedding is None:
                continue
            await self._probe(embedding.metadata.content[:CONTENT_PROBE_CHARS], filters, found)
            if embedding.metadata.document_name:
                await self._probe(embedding.metadata.document_name, filters, found)

    @staticmethod
    def _matches(embedding: Embedding, filters: dict[str, str]) -> bool:
        # the index ranking is approximate and its filter support varies, so check exactly
        metadata = embedding.metadata
        return (
            metadata.organization_id == filters["organizationId"]
            and metadata.source_type == filters["sourceType"]
            and metadata.source_id == filters["sourceId"]
        )

    ##########################################
    ############# ORGANIZATION ###############
    ##########################################

    async def locate_all_for_organization(self, organization_id: str) -> dict[str, list[Embedding]]:
        """Broad discovery of an organization's embeddings, grouped by sourceId.

        One probe with the organization id, capped at the index's maximum
        result size. Only suitable for orphan detection; it does not promise
        to find every chunk of every source.

        Returns:
            dict[str, list[Embedding]]: sourceId -> embeddings. Empty on provider errors.
        """
        if not self._index.available:
            return {}

        known_types = {source_type.value for source_type in SourceType}
        try:
            vector = await self._index.embedder.embed(organization_id)
            matches = await self._index.query(
                vector,
                self._index.get_max_top_k(),
                filters={"organizationId": organization_id},
            )
        except Exception as exc:
            self.logging.warning("Organization-wide discovery for %s failed: %s", organization_id, exc)
            return {}

        grouped: dict[str, dict[str, Embedding]] = {}
        for match in matches:
            embedding = to_embedding(match)
            if embedding is None:
                continue
            if embedding.metadata.organization_id != organization_id:
                continue
            if embedding.metadata.source_type not in known_types:
                continue
            grouped.setdefault(embedding.metadata.source_id, {})[embedding.id] = embedding

        self.logging.debug(
            "Organization %s: discovered %d embeddings across %d sources",
            organization_id, sum(len(group) for group in grouped.values()), len(grouped),
        )
        return {
            source_id: sorted(group.values(), key=lambda e: chunk_index(e.id))
            for source_id, group in grouped.items()
        }
