"""Organization-scoped semantic search over the synced embeddings."""

import asyncio

from services.embedding_sync.EmbeddingLocator import to_embedding
from services.embedding_sync.IndexClient import IndexClient
from shared.clients.rag.models.VectorPoint import VectorMatch
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import RankedResult


class SimilaritySearch:
    """Answers similarity queries for one organization at a time."""

    def __init__(self, helper_config: HelperConfig, index: IndexClient) -> None:
        self.logging = helper_config.get_logger()
        self._index = index
        self.default_top_k = int(helper_config.get_number_val("SEARCH_MAX_TOP_K", default=100))
        self.default_min_score = float(helper_config.get_number_val("SEARCH_MIN_SCORE", default=0.2))

    async def find_similar(
        self,
        query_text: str,
        organization_id: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[RankedResult]:
        """Find the stored chunks most similar to a query.

        Args:
            query_text (str): The query text.
            organization_id (str): Only results of this organization are returned.
            top_k (int | None): Maximum candidates; defaults to SEARCH_MAX_TOP_K.
            min_score (float | None): Minimum similarity; defaults to SEARCH_MIN_SCORE.

        Returns:
            list[RankedResult]: Results at or above min_score, best first. Empty without an index or for a blank query.

        Raises:
            TransientProviderError / NotConfiguredError: If embedding or querying fails.
        """
        if not self._index.available:
            self.logging.warning("Vector index not configured, returning empty results")
            return []
        if not query_text or not query_text.strip():
            return []

        top_k = top_k or self.default_top_k
        min_score = self.default_min_score if min_score is None else min_score
        try:
            vector = await self._index.embedder.embed(query_text)
            matches = await self._index.query(vector, top_k, filters={"organizationId": organization_id})
        except Exception as exc:
            self.logging.error("Similarity search failed for organization %s: %s", organization_id, exc)
            raise

        results = self._rank(matches, organization_id, min_score)
        self.logging.info(
            "Vector search for organization %s: %d candidates, %d above %.2f",
            organization_id, len(matches), len(results), min_score,
        )
        return results

    async def find_similar_batch(
        self,
        query_texts: list[str],
        organization_id: str,
        top_k: int | None = None,
        min_score: float | None = None,
    ) -> list[list[RankedResult]]:
        """Batch variant of find_similar with one embedding call for all queries.

        Output is positional. A query that fails, or is blank, yields an empty
        list in its slot; failures are logged and never raised.
        """
        if not self._index.available:
            self.logging.warning("Vector index not configured, returning empty results")
            return [[] for _ in query_texts]
        if not query_texts:
            return []

        top_k = top_k or self.default_top_k
        min_score = self.default_min_score if min_score is None else min_score
        try:
            vectors = await self._index.embedder.embed_many(query_texts)
        except Exception as exc:
            self.logging.error("Batch embedding of %d queries failed: %s", len(query_texts), exc)
            return [[] for _ in query_texts]

        async def _search(position: int, vector: list[float]) -> list[RankedResult]:
            if not vector:
                return []
            try:
                matches = await self._index.query(vector, top_k, filters={"organizationId": organization_id})
            except Exception as exc:
                self.logging.error("Search for query %d of organization %s failed: %s", position, organization_id, exc)
                return []
            return self._rank(matches, organization_id, min_score)

        results = await asyncio.gather(*[_search(position, vector) for position, vector in enumerate(vectors)])
        self.logging.info(
            "Batch vector search for organization %s: %d queries, %d results",
            organization_id, len(query_texts), sum(len(result) for result in results),
        )
        return list(results)

    @staticmethod
    def _rank(matches: list[VectorMatch], organization_id: str, min_score: float) -> list[RankedResult]:
        ranked: list[RankedResult] = []
        for match in matches:
            embedding = to_embedding(match)
            # the server-side filter is not trusted for tenant isolation
            if embedding is None or embedding.metadata.organization_id != organization_id:
                continue
            score = match.score or 0.0
            if score < min_score:
                continue
            metadata = embedding.metadata
            ranked.append(RankedResult(
                id=embedding.id,
                score=score,
                content=metadata.content,
                source_type=metadata.source_type,
                source_id=metadata.source_id,
                policy_name=metadata.policy_name,
                context_question=metadata.context_question,
                document_name=metadata.document_name,
                manual_answer_question=metadata.manual_answer_question,
            ))
        ranked.sort(key=lambda result: result.score, reverse=True)
        return ranked
