"""Staleness detection for stored embeddings.

Timestamps are compared as strings. That is only sound while every timestamp
is written in one serialization, so everything entering the engine goes
through normalize_timestamp() first: UTC, millisecond precision, "Z" suffix
(e.g. "2024-05-01T09:30:00.000Z").
"""

from datetime import datetime, timezone

from shared.models.embedding import Embedding


def normalize_timestamp(value: datetime | str) -> str:
    """Serialize a timestamp as fixed-precision ISO-8601 UTC.

    Naive datetimes are taken to be UTC.

    Args:
        value (datetime | str): A datetime, or an ISO-8601 string in any offset/precision.

    Returns:
        str: e.g. "2024-05-01T09:30:00.000Z"

    Raises:
        ValueError: If the string is not ISO-8601.
    """
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


def needs_update(existing_embeddings: list[Embedding], current_updated_at: str) -> bool:
    """Decide whether a record's stored embeddings are stale.

    Args:
        existing_embeddings (list[Embedding]): What is stored for the record.
        current_updated_at (str): The record's normalized updatedAt.

    Returns:
        bool: True if nothing is stored, or any stored embedding has no
            updatedAt or one that sorts before current_updated_at.
    """
    if not existing_embeddings:
        return True
    for embedding in existing_embeddings:
        stored = embedding.metadata.updated_at
        if not stored or stored < current_updated_at:
            return True
    return False
