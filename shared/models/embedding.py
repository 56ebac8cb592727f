"""Pydantic models for source records, embeddings and sync results.

Hierarchy:
  SourceRecord       : authoritative record read from the source store.
  EmbeddingMetadata  : metadata stored alongside every vector in the index.
  Embedding          : one stored vector (id + metadata, vector when fetched).
  ChunkItem          : one chunk of text waiting to be embedded and upserted.
  SyncStats          : per source kind counters of one sync phase.
  OrganizationSyncStats: aggregate of a full organization sync.
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class SourceType(str, Enum):
    """Kinds of source records that are mirrored into the vector index."""

    POLICY = "policy"
    CONTEXT = "context"
    MANUAL_ANSWER = "manual_answer"
    KNOWLEDGE_BASE_DOCUMENT = "knowledge_base_document"


class SourceRecord(BaseModel):
    """A single authoritative record as seen by the engine.

    Attributes:
        id:                Record ID in the source store.
        organization_id:   Owning tenant.
        source_type:       Which kind of record this is.
        updated_at:        Normalized ISO-8601 timestamp (millisecond precision, UTC, "Z").
        content:           Renderable plain text. None for knowledge-base documents,
                           whose text is extracted from the stored file on demand.
        label:             Display label (policy/document name, question text).
        file_locator:      Storage key of the uploaded file (documents only).
        file_type:         MIME type of the uploaded file (documents only).
        processing_status: Document processing status in the source store (documents only).
    """

    id: str
    organization_id: str
    source_type: SourceType
    updated_at: str
    content: str | None = None
    label: str | None = None
    file_locator: str | None = None
    file_type: str | None = None
    processing_status: str | None = None


class EmbeddingMetadata(BaseModel):
    """Metadata stored alongside each vector in the index.

    Serialized with camelCase keys (``model_dump(by_alias=True)``) so the
    stored payload stays readable by every other consumer of the index.
    The label fields only improve discoverability and result rendering;
    correctness relies on organization_id, source_type and source_id alone.
    """

    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    organization_id: str = Field(alias="organizationId")
    source_type: SourceType = Field(alias="sourceType")
    source_id: str = Field(alias="sourceId")
    updated_at: str | None = Field(default=None, alias="updatedAt")
    content: str = ""
    policy_name: str | None = Field(default=None, alias="policyName")
    context_question: str | None = Field(default=None, alias="contextQuestion")
    manual_answer_question: str | None = Field(default=None, alias="manualAnswerQuestion")
    document_name: str | None = Field(default=None, alias="documentName")

    def to_payload(self) -> dict:
        """Return the JSON-ready payload written to the index."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Embedding(BaseModel):
    """One vector stored in the index."""

    id: str
    metadata: EmbeddingMetadata
    vector: list[float] = []


class ChunkItem(BaseModel):
    """Text chunk plus the identity and metadata it will be stored under."""

    id: str
    text: str
    metadata: EmbeddingMetadata


class SyncStats(BaseModel):
    """Counters of one sync phase (one source kind)."""

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    total: int = 0
    last_upserted_embedding_id: str | None = None

    def merge(self, other: "SyncStats") -> "SyncStats":
        """Return a new SyncStats holding the sum of both counters.

        The last upserted id of ``other`` wins when it has one.
        """
        return SyncStats(
            created=self.created + other.created,
            updated=self.updated + other.updated,
            skipped=self.skipped + other.skipped,
            failed=self.failed + other.failed,
            total=self.total + other.total,
            last_upserted_embedding_id=other.last_upserted_embedding_id or self.last_upserted_embedding_id,
        )


class VerificationResult(BaseModel):
    """Outcome of a consistency verification."""

    embedding_id: str
    success: bool
    attempts: int
    total_wait_ms: int


class OrganizationSyncStats(BaseModel):
    """Aggregate result of one full organization sync."""

    organization_id: str
    phases: dict[str, SyncStats] = {}
    orphans_deleted: int = 0
    verification: VerificationResult | None = None
    index_available: bool = True

    @property
    def totals(self) -> SyncStats:
        combined = SyncStats()
        for stats in self.phases.values():
            combined = combined.merge(stats)
        return combined


class SyncRecordResult(BaseModel):
    """Result of syncing a single record outside a full sync."""

    success: bool
    embedding_id: str | None = None
    error: str | None = None
    verified: bool | None = None


class DeleteResult(BaseModel):
    """Result of deleting all embeddings of a single source record."""

    success: bool
    deleted_count: int = 0
    error: str | None = None


class RankedResult(BaseModel):
    """A single similarity search hit, scoped to the caller's organization."""

    id: str
    score: float
    content: str
    source_type: str
    source_id: str
    policy_name: str | None = None
    context_question: str | None = None
    document_name: str | None = None
    manual_answer_question: str | None = None
