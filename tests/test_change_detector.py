from datetime import datetime, timedelta, timezone

import pytest

from services.embedding_sync.ChangeDetector import needs_update, normalize_timestamp
from shared.models.embedding import Embedding, EmbeddingMetadata, SourceType


def _embedding(updated_at: str | None, chunk: int = 0) -> Embedding:
    return Embedding(
        id=f"policy_p1_chunk{chunk}",
        metadata=EmbeddingMetadata(
            organization_id="org-1", source_type=SourceType.POLICY, source_id="p1", updated_at=updated_at,
        ),
    )


class TestNormalizeTimestamp:
    def test_datetime_is_rendered_with_milliseconds_and_z(self):
        value = datetime(2024, 5, 1, 9, 30, 0, 123456, tzinfo=timezone.utc)
        assert normalize_timestamp(value) == "2024-05-01T09:30:00.123Z"

    def test_offsets_are_converted_to_utc(self):
        value = datetime(2024, 5, 1, 11, 30, tzinfo=timezone(timedelta(hours=2)))
        assert normalize_timestamp(value) == "2024-05-01T09:30:00.000Z"

    def test_naive_datetimes_are_utc(self):
        assert normalize_timestamp(datetime(2024, 5, 1, 9, 30)) == "2024-05-01T09:30:00.000Z"

    @pytest.mark.parametrize("raw", ["2024-05-01T09:30:00Z", "2024-05-01T09:30:00.000Z", "2024-05-01T11:30:00+02:00"])
    def test_strings_in_other_serializations(self, raw):
        assert normalize_timestamp(raw) == "2024-05-01T09:30:00.000Z"

    def test_invalid_string_raises(self):
        with pytest.raises(ValueError):
            normalize_timestamp("yesterday")


class TestNeedsUpdate:
    def test_nothing_stored(self):
        assert needs_update([], "2024-05-01T09:30:00.000Z") is True

    def test_all_current(self):
        stored = [_embedding("2024-05-01T09:30:00.000Z", n) for n in range(3)]
        assert needs_update(stored, "2024-05-01T09:30:00.000Z") is False

    def test_newer_stored_timestamp_is_not_stale(self):
        assert needs_update([_embedding("2024-06-01T00:00:00.000Z")], "2024-05-01T09:30:00.000Z") is False

    def test_one_old_chunk_makes_the_set_stale(self):
        stored = [_embedding("2024-05-01T09:30:00.000Z", 0), _embedding("2024-04-01T09:30:00.000Z", 1)]
        assert needs_update(stored, "2024-05-01T09:30:00.000Z") is True

    def test_missing_timestamp_is_stale(self):
        assert needs_update([_embedding(None)], "2024-05-01T09:30:00.000Z") is True

    def test_comparison_is_lexicographic(self):
        # the comparison works on strings, so both sides must share one serialization
        assert needs_update([_embedding("2024-05-01T09:30:00Z")], "2024-05-01T09:30:00.000Z") is False
        assert needs_update([_embedding("2024-05-01T09:30:00.000Z")], "2024-05-01T09:30:00Z") is True
