"""Shared fixtures: in-memory vector index, deterministic embedder and source store."""

import hashlib
import logging
import math

import pytest

from services.embedding_sync.IndexClient import IndexClient
from services.embedding_sync.SourceCollectors import build_collectors
from services.embedding_sync.SyncCoordinator import SyncCoordinator
from shared.clients.rag.models.VectorPoint import VectorMatch, VectorPoint
from shared.clients.source.models.RecordsPage import DownloadedFile
from shared.errors import SourceNotFoundError, TransientProviderError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import SourceType

ORG = "org-1"
T1 = "2024-05-01T09:30:00.000Z"
T2 = "2024-05-02T10:00:00.000Z"


##########################################
################ FAKES ###################
##########################################

def hash_vector(text: str, dims: int = 16) -> list[float]:
    """Deterministic, non-negative pseudo-embedding of a text."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    return [(byte + 1) / 256 for byte in digest[:dims]]


def cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class FakeEmbedder:
    """Stands in for an EmbedClientInterface; counts provider round trips."""

    def __init__(self) -> None:
        self.embed_calls = 0
        self.embed_many_calls = 0
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Cannot embed empty text.")
        self.embed_calls += 1
        if self.fail:
            raise TransientProviderError("embedding backend down", status_code=503)
        return hash_vector(text)

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        self.embed_many_calls += 1
        if self.fail:
            raise TransientProviderError("embedding backend down", status_code=503)
        return [hash_vector(text) if text and text.strip() else [] for text in texts]


class InMemoryIndex:
    """Stands in for a RAGClientInterface.

    Queries rank every stored point by cosine similarity. Points written
    with hidden_for_queries > 0 are fetchable but stay out of query results
    for that many queries, mimicking an eventually consistent index.
    """

    def __init__(self, max_top_k: int = 1000, honor_filters: bool = True) -> None:
        self.points: dict[str, VectorPoint] = {}
        self.max_top_k = max_top_k
        self.honor_filters = honor_filters
        self.hidden_for_queries = 0
        self._hidden: dict[str, int] = {}
        self.upsert_calls = 0
        self.upserted_ids: list[str] = []
        self.delete_calls = 0
        self.deleted_ids: list[str] = []
        self.query_calls = 0
        self.fail_upsert = False
        self.fail_query = False
        self.fail_delete = False

    def seed(self, embedding_id: str, metadata: dict, vector: list[float] | None = None) -> None:
        self.points[embedding_id] = VectorPoint(
            id=embedding_id, vector=vector or hash_vector(metadata.get("content") or embedding_id), metadata=metadata,
        )

    def get_max_top_k(self) -> int:
        return self.max_top_k

    async def do_upsert(self, points: list[VectorPoint]) -> None:
        self.upsert_calls += 1
        if self.fail_upsert:
            raise TransientProviderError("upsert rejected", status_code=500)
        for point in points:
            self.points[point.id] = point
            self.upserted_ids.append(point.id)
            if self.hidden_for_queries:
                self._hidden[point.id] = self.hidden_for_queries

    async def do_query(self, vector, top_k, include_metadata=True, include_vectors=False, filters=None) -> list[VectorMatch]:
        self.query_calls += 1
        if self.fail_query:
            raise TransientProviderError("query failed", status_code=502)
        candidates = []
        for point in self.points.values():
            if self._hidden.get(point.id):
                continue
            if self.honor_filters and filters and any(point.metadata.get(key) != value for key, value in filters.items()):
                continue
            candidates.append((cosine(vector, point.vector), point))
        for point_id in list(self._hidden):
            self._hidden[point_id] -= 1
            if self._hidden[point_id] <= 0:
                del self._hidden[point_id]
        candidates.sort(key=lambda pair: pair[0], reverse=True)
        return [
            VectorMatch(
                id=point.id,
                score=score,
                metadata=dict(point.metadata) if include_metadata else None,
                vector=list(point.vector) if include_vectors else None,
            )
            for score, point in candidates[:min(top_k, self.max_top_k)]
        ]

    async def do_fetch(self, ids: list[str], include_vectors: bool = False) -> list[VectorMatch | None]:
        results: list[VectorMatch | None] = []
        for point_id in ids:
            point = self.points.get(point_id)
            if point is None:
                results.append(None)
                continue
            results.append(VectorMatch(
                id=point.id, metadata=dict(point.metadata), vector=list(point.vector) if include_vectors else None,
            ))
        return results

    async def do_delete(self, ids: list[str]) -> None:
        self.delete_calls += 1
        if self.fail_delete:
            raise TransientProviderError("delete failed", status_code=500)
        for point_id in ids:
            self.points.pop(point_id, None)
            self.deleted_ids.append(point_id)

    def ids_for(self, source_type: str, source_id: str) -> list[str]:
        return sorted(
            point.id for point in self.points.values()
            if point.metadata.get("sourceType") == source_type and point.metadata.get("sourceId") == source_id
        )


class FakeSourceStore:
    """Stands in for a SourceClientInterface backed by plain dicts."""

    def __init__(self) -> None:
        self.records: dict[SourceType, list[dict]] = {source_type: [] for source_type in SourceType}
        self.files: dict[str, DownloadedFile] = {}
        self.status_updates: list[tuple[str, str]] = []
        self.list_calls = 0
        self.failing_types: set[SourceType] = set()

    def add(self, source_type: SourceType, **raw) -> dict:
        raw.setdefault("organizationId", ORG)
        raw.setdefault("updatedAt", T1)
        self.records[source_type].append(raw)
        return raw

    def remove(self, source_type: SourceType, record_id: str) -> None:
        self.records[source_type] = [raw for raw in self.records[source_type] if raw["id"] != record_id]

    def update(self, source_type: SourceType, record_id: str, **changes) -> None:
        for raw in self.records[source_type]:
            if raw["id"] == record_id:
                raw.update(changes)

    async def do_list_records(self, source_type: SourceType, organization_id: str) -> list[dict]:
        self.list_calls += 1
        if source_type in self.failing_types:
            raise TransientProviderError(f"listing {source_type.value} failed", status_code=500)
        return [dict(raw) for raw in self.records[source_type] if raw["organizationId"] == organization_id]

    async def do_get_record(self, source_type: SourceType, record_id: str, organization_id: str) -> dict:
        for raw in self.records[source_type]:
            if raw["id"] == record_id and raw["organizationId"] == organization_id:
                return dict(raw)
        raise SourceNotFoundError(source_type.value, record_id, organization_id)

    async def do_download_document(self, locator: str) -> DownloadedFile:
        if locator not in self.files:
            raise TransientProviderError(f"file {locator} not found", status_code=404)
        return self.files[locator]

    async def do_update_document_status(self, record_id: str, organization_id: str, status: str) -> None:
        self.status_updates.append((record_id, status))


class SleepRecorder:
    """Replaces asyncio.sleep; records requested delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


##########################################
############### FIXTURES #################
##########################################

@pytest.fixture
def helper_config() -> HelperConfig:
    return HelperConfig(logger=logging.getLogger("embedding_sync.tests"))


@pytest.fixture
def rag() -> InMemoryIndex:
    return InMemoryIndex()


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def source() -> FakeSourceStore:
    return FakeSourceStore()


@pytest.fixture
def index(helper_config, rag, embedder) -> IndexClient:
    return IndexClient(helper_config, rag, embedder)


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def coordinator(helper_config, index, source, sleeper) -> SyncCoordinator:
    return SyncCoordinator(helper_config, index, build_collectors(helper_config, source), sleep=sleeper)
