"""Engine-agnostic shapes of what goes into and comes out of a vector index."""

from pydantic import BaseModel


class VectorPoint(BaseModel):
    """A vector to be written to the index.

    Attributes:
        id:       Embedding ID, e.g. "policy_abc_chunk0" or "manual_answer_42".
        vector:   The embedding vector.
        metadata: Flat JSON payload (camelCase keys, see EmbeddingMetadata.to_payload()).
    """

    id: str
    vector: list[float]
    metadata: dict


class VectorMatch(BaseModel):
    """A vector read back from the index by a query or a fetch.

    Attributes:
        id:       Embedding ID as written by the engine.
        score:    Similarity score for query results; None for fetch results.
        metadata: Stored payload, if requested.
        vector:   Stored vector, if requested.
    """

    id: str
    score: float | None = None
    metadata: dict | None = None
    vector: list[float] | None = None
