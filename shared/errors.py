"""Error taxonomy of the embedding sync engine.

Callers distinguish the failure classes by type:

- NotConfiguredError: a required backend (embedding provider, vector index,
  source store) has no configuration. Read paths degrade instead of raising.
- SourceNotFoundError: the requested source record does not exist.
- TransientProviderError: a network, rate-limit or non-2xx failure from a
  remote provider. Counted per record during bulk sync, retried only by the
  consistency verifier.
- ConsistencyTimeoutError: a write never became searchable within the retry
  budget.
- ChunkingConfigurationError: invalid chunk size/overlap parameters.
- UnsupportedContentError: a knowledge-base file type we cannot extract text from.
"""


class EmbeddingSyncError(RuntimeError):
    """Base error raised by the embedding sync engine."""


class NotConfiguredError(EmbeddingSyncError):
    """Raised when a backend required for the operation is not configured."""


class SourceNotFoundError(EmbeddingSyncError):
    """Raised when a source record does not exist in the source store."""

    def __init__(self, source_type: str, source_id: str, organization_id: str):
        super().__init__(f"{source_type} '{source_id}' not found for organization '{organization_id}'")
        self.source_type = source_type
        self.source_id = source_id
        self.organization_id = organization_id


class TransientProviderError(EmbeddingSyncError):
    """Raised when a remote provider fails in a way that may succeed on retry."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ConsistencyTimeoutError(EmbeddingSyncError):
    """Raised when an embedding was not self-retrievable within the retry budget."""

    def __init__(self, embedding_id: str, attempts: int, total_wait_ms: int):
        super().__init__(
            f"Embedding '{embedding_id}' not searchable after {attempts} attempts ({total_wait_ms} ms)"
        )
        self.embedding_id = embedding_id
        self.attempts = attempts
        self.total_wait_ms = total_wait_ms


class ChunkingConfigurationError(EmbeddingSyncError, ValueError):
    """Raised when chunk size and overlap parameters are invalid."""


class UnsupportedContentError(EmbeddingSyncError):
    """Raised when a document's file type has no text extractor."""
