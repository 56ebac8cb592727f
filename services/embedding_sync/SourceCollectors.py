"""Per-kind access to authoritative source records.

Each collector knows how one kind of record is listed, turned into text,
chunked and labelled. The phase runner and the coordinator only talk to the
SourceCollector interface.
"""

from shared.clients.source.ContentExtractor import ContentExtractor
from shared.clients.source.SourceClientInterface import SourceClientInterface
from shared.errors import SourceNotFoundError
from shared.helper.HelperConfig import HelperConfig
from shared.models.embedding import ChunkItem, EmbeddingMetadata, SourceRecord, SourceType
from services.embedding_sync.ChangeDetector import normalize_timestamp
from services.embedding_sync.TextPreparer import chunk_text, extract_text

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


class SourceCollector:
    """Base collector. Subclasses set the class attributes and override the text hooks."""

    source_type: SourceType
    batch_size_key: str
    default_batch_size = 100
    chunk_size_tokens: int | None = 500   # None: the record is embedded whole
    chunk_overlap_tokens = 50
    require_content = False              # empty text counts as a failure instead of a skip

    def __init__(self, helper_config: HelperConfig, source_client: SourceClientInterface) -> None:
        self.logging = helper_config.get_logger()
        self._source = source_client
        self.batch_size = max(1, int(helper_config.get_number_val(self.batch_size_key, default=self.default_batch_size)))

    ##########################################
    ################ RECORDS #################
    ##########################################

    async def list_records(self, organization_id: str) -> list[SourceRecord]:
        """All current records of this kind for an organization.

        Raises:
            TransientProviderError: If the source store cannot be read.
        """
        raw_records = await self._source.do_list_records(self.source_type, organization_id)
        return [
            self._to_record(raw, organization_id)
            for raw in raw_records
            if self._accepts(raw)
        ]

    async def get_record(self, record_id: str, organization_id: str) -> SourceRecord:
        """One record by id.

        Raises:
            SourceNotFoundError: If the record does not exist or is not eligible for embedding.
        """
        raw = await self._source.do_get_record(self.source_type, record_id, organization_id)
        if not raw or not self._accepts(raw):
            raise SourceNotFoundError(self.source_type.value, record_id, organization_id)
        return self._to_record(raw, organization_id)

    def _accepts(self, raw: dict) -> bool:
        return True

    def _to_record(self, raw: dict, organization_id: str) -> SourceRecord:
        return SourceRecord(
            id=str(raw["id"]),
            organization_id=raw.get("organizationId") or organization_id,
            source_type=self.source_type,
            updated_at=normalize_timestamp(raw["updatedAt"]),
            content=self._render(raw),
            label=self._label(raw),
            file_locator=raw.get("fileLocator"),
            file_type=raw.get("fileType"),
            processing_status=raw.get("processingStatus"),
        )

    def _render(self, raw: dict) -> str | None:
        """Renderable text of a raw record."""
        raise NotImplementedError

    def _label(self, raw: dict) -> str | None:
        return None

    ##########################################
    ############### TEXT/CHUNKS ##############
    ##########################################

    def force_refresh(self, record: SourceRecord) -> bool:
        """Whether the record must be re-embedded even if its embeddings look fresh."""
        return False

    async def load_text(self, record: SourceRecord) -> str:
        """The text to embed for a record."""
        return record.content or ""

    async def mark_status(self, record: SourceRecord, status: str) -> None:
        """Report processing progress back to the source store. No-op for most kinds."""
        return None

    def embedding_id(self, record_id: str, chunk_number: int) -> str:
        return f"{self.source_type.value}_{record_id}_chunk{chunk_number}"

    def build_items(self, record: SourceRecord, text: str) -> list[ChunkItem]:
        """Split a record's text into chunk items with their ids and metadata.

        Raises:
            ChunkingConfigurationError: If the collector's chunk parameters are invalid.
        """
        if not text or not text.strip():
            return []
        chunks = chunk_text(text, self.chunk_size_tokens, self.chunk_overlap_tokens)
        return [
            ChunkItem(id=self.embedding_id(record.id, number), text=chunk, metadata=self._metadata(record, chunk))
            for number, chunk in enumerate(chunks)
            if chunk.strip()
        ]

    def _metadata(self, record: SourceRecord, content: str) -> EmbeddingMetadata:
        return EmbeddingMetadata(
            organization_id=record.organization_id,
            source_type=self.source_type,
            source_id=record.id,
            updated_at=record.updated_at,
            content=content,
            **self._label_metadata(record),
        )

    def _label_metadata(self, record: SourceRecord) -> dict:
        return {}


class PolicyCollector(SourceCollector):
    """Published policies. Text is name, description and the flattened editor content."""

    source_type = SourceType.POLICY
    batch_size_key = "SYNC_POLICY_BATCH_SIZE"

    def _accepts(self, raw: dict) -> bool:
        return (raw.get("status") or "published") == "published"

    def _render(self, raw: dict) -> str | None:
        parts = [raw.get("name") or "", raw.get("description") or "", extract_text(raw.get("content"))]
        return "\n\n".join(part.strip() for part in parts if part and part.strip())

    def _label(self, raw: dict) -> str | None:
        return raw.get("name")

    def _label_metadata(self, record: SourceRecord) -> dict:
        return {"policy_name": record.label}


class ContextCollector(SourceCollector):
    """Question/answer context entries."""

    source_type = SourceType.CONTEXT
    batch_size_key = "SYNC_CONTEXT_BATCH_SIZE"
    chunk_size_tokens = 8000

    def _render(self, raw: dict) -> str | None:
        return f"Question: {raw.get('question') or ''}\n\nAnswer: {raw.get('answer') or ''}"

    def _label(self, raw: dict) -> str | None:
        return raw.get("question")

    def _label_metadata(self, record: SourceRecord) -> dict:
        return {"context_question": record.label}


class ManualAnswerCollector(SourceCollector):
    """Manually curated questionnaire answers, one embedding per answer."""

    source_type = SourceType.MANUAL_ANSWER
    batch_size_key = "SYNC_MANUAL_ANSWER_BATCH_SIZE"
    chunk_size_tokens = None

    def _render(self, raw: dict) -> str | None:
        return f"{raw.get('question') or ''}\n\n{raw.get('answer') or ''}"

    def _label(self, raw: dict) -> str | None:
        return raw.get("question")

    def _label_metadata(self, record: SourceRecord) -> dict:
        return {"manual_answer_question": record.label}

    def embedding_id(self, record_id: str, chunk_number: int = 0) -> str:
        return f"{self.source_type.value}_{record_id}"

    def build_items(self, record: SourceRecord, text: str) -> list[ChunkItem]:
        if not text or not text.strip():
            return []
        return [ChunkItem(id=self.embedding_id(record.id), text=text, metadata=self._metadata(record, text))]


class KnowledgeBaseDocumentCollector(SourceCollector):
    """Uploaded knowledge-base files. Text is extracted from the stored file on demand."""

    source_type = SourceType.KNOWLEDGE_BASE_DOCUMENT
    batch_size_key = "SYNC_DOCUMENT_BATCH_SIZE"
    default_batch_size = 20
    require_content = True

    def __init__(
        self,
        helper_config: HelperConfig,
        source_client: SourceClientInterface,
        content_extractor: ContentExtractor | None = None,
    ) -> None:
        super().__init__(helper_config=helper_config, source_client=source_client)
        self._extractor = content_extractor or ContentExtractor()

    def _render(self, raw: dict) -> str | None:
        return None

    def _label(self, raw: dict) -> str | None:
        return raw.get("name")

    def _label_metadata(self, record: SourceRecord) -> dict:
        return {"document_name": record.label}

    def force_refresh(self, record: SourceRecord) -> bool:
        return record.processing_status in (STATUS_PENDING, STATUS_FAILED)

    async def load_text(self, record: SourceRecord) -> str:
        """Download the document and extract its text.

        Raises:
            ValueError: If the record has no file locator.
            TransientProviderError: If the download fails.
            UnsupportedContentError: If the file type cannot be extracted.
        """
        if not record.file_locator:
            raise ValueError(f"Document '{record.id}' has no stored file.")
        downloaded = await self._source.do_download_document(record.file_locator)
        # the stored file type wins over whatever the storage layer reports
        file_type = record.file_type or downloaded.content_type
        return self._extractor.extract_content(downloaded.data, file_type)

    async def mark_status(self, record: SourceRecord, status: str) -> None:
        try:
            await self._source.do_update_document_status(record.id, record.organization_id, status)
        except Exception as exc:
            self.logging.warning("Could not set processing status of document %s to '%s': %s", record.id, status, exc)


def build_collectors(
    helper_config: HelperConfig,
    source_client: SourceClientInterface,
    content_extractor: ContentExtractor | None = None,
) -> list[SourceCollector]:
    """All collectors in sync order: policies, context, manual answers, documents."""
    return [
        PolicyCollector(helper_config, source_client),
        ContextCollector(helper_config, source_client),
        ManualAnswerCollector(helper_config, source_client),
        KnowledgeBaseDocumentCollector(helper_config, source_client, content_extractor),
    ]
