import asyncio

import pytest

from conftest import ORG, T1, T2, InMemoryIndex
from services.embedding_sync.IndexClient import IndexClient
from services.embedding_sync.SourceCollectors import build_collectors
from services.embedding_sync.SyncCoordinator import DELETE_VERIFY_RETRIES, NOT_CONFIGURED, SyncCoordinator
from shared.clients.source.models.RecordsPage import DownloadedFile
from shared.errors import SourceNotFoundError, TransientProviderError
from shared.models.embedding import SourceType

HANDBOOK = "".join(f"Section {n}. Access reviews happen every quarter and are signed off by the owner. " for n in range(120))


def _seed_sources(source) -> None:
    source.add(SourceType.POLICY, id="p1", name="Access Control", description="Who gets access", content="Least privilege.")
    source.add(SourceType.CONTEXT, id="c1", question="Where is data hosted?", answer="EU region.")
    source.add(SourceType.MANUAL_ANSWER, id="42", question="Do you encrypt backups?", answer="Yes, AES-256.")
    _add_document(source, "d1", "Handbook", HANDBOOK)


def _add_document(source, record_id: str, name: str, text: str | None, file_type: str = "text/plain", status: str = "completed") -> None:
    locator = f"{ORG}/kb/{record_id}"
    source.add(
        SourceType.KNOWLEDGE_BASE_DOCUMENT,
        id=record_id, name=name, fileLocator=locator, fileType=file_type, processingStatus=status,
    )
    if text is not None:
        source.files[locator] = DownloadedFile(data=text.encode("utf-8"), content_type=file_type)


class LaggyIndex(InMemoryIndex):
    """Acknowledges the first `ignored_deletes` delete calls without applying them."""

    def __init__(self, ignored_deletes: int) -> None:
        super().__init__()
        self.ignored_deletes = ignored_deletes

    async def do_delete(self, ids: list[str]) -> None:
        if self.ignored_deletes > 0:
            self.ignored_deletes -= 1
            self.delete_calls += 1
            return
        await super().do_delete(ids)


##########################################
############### FULL SYNC ################
##########################################

class TestFullSync:
    @pytest.mark.asyncio
    async def test_first_sync_creates_everything(self, coordinator, source, rag):
        _seed_sources(source)
        stats = await coordinator.sync_organization(ORG)

        assert list(stats.phases) == ["policy", "context", "manual_answer", "knowledge_base_document"]
        assert stats.totals.created == 4 and stats.totals.failed == 0
        assert rag.ids_for("policy", "p1") == ["policy_p1_chunk0"]
        assert rag.ids_for("manual_answer", "42") == ["manual_answer_42"]
        assert len(rag.ids_for("knowledge_base_document", "d1")) > 1
        assert rag.points["policy_p1_chunk0"].metadata["policyName"] == "Access Control"
        assert rag.points["policy_p1_chunk0"].metadata["updatedAt"] == T1
        assert stats.verification is not None and stats.verification.success

    @pytest.mark.asyncio
    async def test_second_sync_is_a_no_op(self, coordinator, source, rag):
        _seed_sources(source)
        await coordinator.sync_organization(ORG)
        upserts, deletes = rag.upsert_calls, rag.delete_calls

        stats = await coordinator.sync_organization(ORG)
        assert rag.upsert_calls == upserts
        assert rag.delete_calls == deletes
        assert stats.totals.skipped == 4
        assert stats.orphans_deleted == 0
        assert stats.verification is None

    @pytest.mark.asyncio
    async def test_edited_record_replaces_all_its_chunks(self, coordinator, source, rag):
        source.add(SourceType.POLICY, id="p1", name="Long policy", content="Controls are reviewed. " * 400)
        await coordinator.sync_organization(ORG)
        assert len(rag.ids_for("policy", "p1")) > 1

        source.update(SourceType.POLICY, "p1", updatedAt=T2, content="Short now.")
        stats = await coordinator.sync_organization(ORG)

        assert stats.phases["policy"].updated == 1
        assert rag.ids_for("policy", "p1") == ["policy_p1_chunk0"]
        assert rag.points["policy_p1_chunk0"].metadata["updatedAt"] == T2
        assert "Short now." in rag.points["policy_p1_chunk0"].metadata["content"]

    @pytest.mark.asyncio
    async def test_timestamps_in_other_serializations_are_normalized(self, coordinator, source, rag):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A", updatedAt="2024-05-01T11:30:00+02:00")
        await coordinator.sync_organization(ORG)
        assert rag.points["context_c1_chunk0"].metadata["updatedAt"] == T1

        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["context"].skipped == 1

    @pytest.mark.asyncio
    async def test_only_published_policies_are_embedded(self, coordinator, source, rag):
        source.add(SourceType.POLICY, id="p1", name="Live", content="x", status="published")
        source.add(SourceType.POLICY, id="p2", name="Draft", content="y", status="draft")
        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["policy"].total == 1
        assert rag.ids_for("policy", "p2") == []


class TestOrphans:
    @pytest.mark.asyncio
    async def test_deleted_record_is_reaped(self, coordinator, source, rag):
        _seed_sources(source)
        rag.seed("policy_p9_chunk0", {
            "organizationId": "org-2", "sourceType": "policy", "sourceId": "p9", "updatedAt": T1, "content": "other tenant",
        })
        await coordinator.sync_organization(ORG)

        source.remove(SourceType.MANUAL_ANSWER, "42")
        stats = await coordinator.sync_organization(ORG)

        assert stats.orphans_deleted == 1
        assert rag.ids_for("manual_answer", "42") == []
        assert rag.ids_for("policy", "p9") == ["policy_p9_chunk0"]
        assert rag.ids_for("policy", "p1") == ["policy_p1_chunk0"]

    @pytest.mark.asyncio
    async def test_same_id_in_another_kind_is_not_protected(self, coordinator, source, rag):
        source.add(SourceType.POLICY, id="x1", name="Shared id", content="policy text")
        source.add(SourceType.CONTEXT, id="x1", question="Q", answer="A")
        await coordinator.sync_organization(ORG)

        source.remove(SourceType.CONTEXT, "x1")
        stats = await coordinator.sync_organization(ORG)

        assert stats.orphans_deleted == 1
        assert rag.ids_for("context", "x1") == []
        assert rag.ids_for("policy", "x1") == ["policy_x1_chunk0"]


class TestSingleFlight:
    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_run(self, coordinator, source, rag):
        _seed_sources(source)
        first, second = await asyncio.gather(
            coordinator.sync_organization(ORG), coordinator.sync_organization(ORG),
        )
        assert first is second
        # one upsert call per record, as for a single sequential run
        assert rag.upsert_calls == 4
        # one run lists every kind twice: once for its phase, once before reaping
        assert source.list_calls == 2 * len(SourceType)
        assert len(coordinator.locks) == 0

    @pytest.mark.asyncio
    async def test_different_organizations_run_independently(self, coordinator, source):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        source.add(SourceType.CONTEXT, id="c2", question="Q2", answer="A2", organizationId="org-2")
        first, second = await asyncio.gather(
            coordinator.sync_organization(ORG), coordinator.sync_organization("org-2"),
        )
        assert first.organization_id == ORG and second.organization_id == "org-2"
        assert first.phases["context"].created == 1 and second.phases["context"].created == 1

    @pytest.mark.asyncio
    async def test_listing_failure_propagates_and_releases_the_lock(self, coordinator, source, rag):
        _seed_sources(source)
        source.failing_types = {SourceType.CONTEXT}

        with pytest.raises(TransientProviderError):
            await coordinator.sync_organization(ORG)
        assert not coordinator.locks.is_running(ORG)
        # phases run in order, policies were done before the failure
        assert rag.ids_for("policy", "p1") == ["policy_p1_chunk0"]
        assert rag.ids_for("context", "c1") == []

        source.failing_types = set()
        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["context"].created == 1

    @pytest.mark.asyncio
    async def test_blank_organization_is_rejected(self, coordinator, source):
        assert await coordinator.sync_organization("   ") is None
        assert source.list_calls == 0


class TestRecordFailures:
    @pytest.mark.asyncio
    async def test_failing_document_does_not_affect_siblings(self, coordinator, source, rag):
        _add_document(source, "d-ok", "Good", "Readable text.")
        _add_document(source, "d-missing", "Lost", None)
        _add_document(source, "d-img", "Scan", "\x89PNG", file_type="image/png")

        stats = await coordinator.sync_organization(ORG)
        phase = stats.phases["knowledge_base_document"]
        assert (phase.created, phase.failed, phase.total) == (1, 2, 3)
        assert rag.ids_for("knowledge_base_document", "d-ok") == ["knowledge_base_document_d-ok_chunk0"]
        assert ("d-ok", "completed") in source.status_updates
        assert ("d-missing", "failed") in source.status_updates
        assert ("d-img", "failed") in source.status_updates

    @pytest.mark.asyncio
    async def test_empty_document_counts_as_failure(self, coordinator, source):
        _add_document(source, "d-empty", "Blank", "   ")
        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["knowledge_base_document"].failed == 1

    @pytest.mark.asyncio
    async def test_rejected_upsert_counts_as_failure(self, coordinator, source, rag):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        rag.fail_upsert = True
        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["context"].failed == 1
        assert stats.verification is None

    @pytest.mark.asyncio
    async def test_failed_load_keeps_old_embeddings(self, coordinator, source, rag):
        _add_document(source, "d1", "Handbook", "Version one.")
        await coordinator.sync_organization(ORG)

        source.update(SourceType.KNOWLEDGE_BASE_DOCUMENT, "d1", updatedAt=T2)
        del source.files[f"{ORG}/kb/d1"]
        stats = await coordinator.sync_organization(ORG)

        assert stats.phases["knowledge_base_document"].failed == 1
        assert rag.ids_for("knowledge_base_document", "d1") == ["knowledge_base_document_d1_chunk0"]

    @pytest.mark.asyncio
    async def test_emptied_manual_answer_loses_its_embedding(self, coordinator, source, rag):
        source.add(SourceType.MANUAL_ANSWER, id="42", question="Do you encrypt backups?", answer="Yes.")
        await coordinator.sync_organization(ORG)
        assert rag.ids_for("manual_answer", "42") == ["manual_answer_42"]

        source.update(SourceType.MANUAL_ANSWER, "42", updatedAt=T2, question="", answer="")
        stats = await coordinator.sync_organization(ORG)

        assert stats.phases["manual_answer"].skipped == 1
        assert stats.phases["manual_answer"].failed == 0
        assert rag.ids_for("manual_answer", "42") == []

    @pytest.mark.asyncio
    async def test_emptied_policy_loses_all_chunks(self, coordinator, source, rag):
        source.add(SourceType.POLICY, id="p1", name="P", content="Controls are reviewed. " * 400)
        await coordinator.sync_organization(ORG)
        assert len(rag.ids_for("policy", "p1")) > 1

        source.update(SourceType.POLICY, "p1", updatedAt=T2, name="", description="", content=None)
        await coordinator.sync_organization(ORG)

        assert rag.ids_for("policy", "p1") == []

    @pytest.mark.asyncio
    async def test_pending_document_is_refreshed_even_if_fresh(self, coordinator, source, rag):
        _add_document(source, "d1", "Handbook", "Version one.", status="pending")
        await coordinator.sync_organization(ORG)
        upserts = rag.upsert_calls

        stats = await coordinator.sync_organization(ORG)
        assert stats.phases["knowledge_base_document"].updated == 1
        assert rag.upsert_calls == upserts + 1
        assert source.status_updates[-2:] == [("d1", "processing"), ("d1", "completed")]


class TestUnavailableIndex:
    @pytest.fixture
    def offline(self, helper_config, embedder, source, sleeper) -> SyncCoordinator:
        index = IndexClient(helper_config, None, embedder)
        return SyncCoordinator(helper_config, index, build_collectors(helper_config, source), sleep=sleeper)

    @pytest.mark.asyncio
    async def test_sync_is_skipped(self, offline, source):
        _seed_sources(source)
        stats = await offline.sync_organization(ORG)
        assert stats.index_available is False
        assert stats.phases == {}
        assert source.list_calls == 0

    @pytest.mark.asyncio
    async def test_single_record_and_delete_report_not_configured(self, offline, source):
        _seed_sources(source)
        synced = await offline.sync_single_record(SourceType.POLICY, "p1", ORG)
        deleted = await offline.delete_source_embeddings(SourceType.POLICY, "p1", ORG)
        assert (synced.success, synced.error) == (False, NOT_CONFIGURED)
        assert (deleted.success, deleted.error) == (False, NOT_CONFIGURED)


##########################################
############# SINGLE RECORD ##############
##########################################

class TestSyncSingleRecord:
    @pytest.mark.asyncio
    async def test_new_record_is_embedded_and_verified(self, coordinator, source, rag):
        source.add(SourceType.CONTEXT, id="c1", question="Where is data hosted?", answer="EU")
        result = await coordinator.sync_single_record("context", "c1", ORG)
        assert result.success and result.verified
        assert result.embedding_id == "context_c1_chunk0"
        assert rag.ids_for("context", "c1") == ["context_c1_chunk0"]

    @pytest.mark.asyncio
    async def test_manual_answer_id(self, coordinator, source):
        source.add(SourceType.MANUAL_ANSWER, id="42", question="Q", answer="A")
        result = await coordinator.sync_single_record(SourceType.MANUAL_ANSWER, "42", ORG)
        assert result.embedding_id == "manual_answer_42"

    @pytest.mark.asyncio
    async def test_existing_embeddings_are_always_replaced(self, coordinator, source, rag):
        source.add(SourceType.POLICY, id="p1", name="P", content="Controls are reviewed. " * 400)
        await coordinator.sync_organization(ORG)
        source.update(SourceType.POLICY, "p1", content="Short")

        result = await coordinator.sync_single_record(SourceType.POLICY, "p1", ORG)
        assert result.success
        assert rag.ids_for("policy", "p1") == ["policy_p1_chunk0"]

    @pytest.mark.asyncio
    async def test_missing_record_raises(self, coordinator):
        with pytest.raises(SourceNotFoundError):
            await coordinator.sync_single_record(SourceType.CONTEXT, "nope", ORG)

    @pytest.mark.asyncio
    async def test_unpublished_policy_is_not_found(self, coordinator, source):
        source.add(SourceType.POLICY, id="p1", name="Draft", content="x", status="draft")
        with pytest.raises(SourceNotFoundError):
            await coordinator.sync_single_record(SourceType.POLICY, "p1", ORG)

    @pytest.mark.asyncio
    async def test_slow_index_reports_unverified(self, coordinator, source, rag, sleeper):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        rag.hidden_for_queries = 100
        result = await coordinator.sync_single_record(SourceType.CONTEXT, "c1", ORG)
        assert result.success and result.verified is False
        assert sleeper.delays == [0.1, 0.2, 0.4, 0.8]

    @pytest.mark.asyncio
    async def test_provider_failure_is_a_result(self, coordinator, source, rag):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        rag.fail_upsert = True
        result = await coordinator.sync_single_record(SourceType.CONTEXT, "c1", ORG)
        assert result.success is False
        assert "upsert" in result.error


##########################################
################ DELETE ##################
##########################################

class TestDeleteSourceEmbeddings:
    @pytest.mark.asyncio
    async def test_deletes_all_chunks(self, coordinator, source, rag, sleeper):
        source.add(SourceType.POLICY, id="p1", name="P", content="Controls are reviewed. " * 400)
        await coordinator.sync_organization(ORG)
        chunks = len(rag.ids_for("policy", "p1"))

        result = await coordinator.delete_source_embeddings(SourceType.POLICY, "p1", ORG)
        assert result.success and result.deleted_count == chunks
        assert rag.ids_for("policy", "p1") == []
        assert sleeper.delays == []

    @pytest.mark.asyncio
    async def test_nothing_to_delete(self, coordinator):
        result = await coordinator.delete_source_embeddings("context", "ghost", ORG)
        assert result.success and result.deleted_count == 0

    @pytest.mark.asyncio
    async def test_surviving_document_chunks_are_deleted_again(self, helper_config, embedder, source, sleeper):
        rag = LaggyIndex(ignored_deletes=1)
        coordinator = SyncCoordinator(
            helper_config, IndexClient(helper_config, rag, embedder), build_collectors(helper_config, source), sleep=sleeper,
        )
        _add_document(source, "d1", "Handbook", HANDBOOK)
        await coordinator.sync_organization(ORG)
        chunks = len(rag.ids_for("knowledge_base_document", "d1"))

        result = await coordinator.delete_source_embeddings(SourceType.KNOWLEDGE_BASE_DOCUMENT, "d1", ORG)
        assert result.success
        assert result.deleted_count == 2 * chunks
        assert rag.ids_for("knowledge_base_document", "d1") == []
        assert sleeper.delays == [2.0]

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, helper_config, embedder, source, sleeper):
        rag = LaggyIndex(ignored_deletes=100)
        coordinator = SyncCoordinator(
            helper_config, IndexClient(helper_config, rag, embedder), build_collectors(helper_config, source), sleep=sleeper,
        )
        _add_document(source, "d1", "Handbook", "Version one.")
        await coordinator.sync_organization(ORG)
        deletes = rag.delete_calls

        result = await coordinator.delete_source_embeddings(SourceType.KNOWLEDGE_BASE_DOCUMENT, "d1", ORG)
        assert result.success
        assert sleeper.delays == [2.0 * n for n in range(1, DELETE_VERIFY_RETRIES + 1)]
        assert rag.delete_calls == deletes + 1 + DELETE_VERIFY_RETRIES
        assert rag.ids_for("knowledge_base_document", "d1") == ["knowledge_base_document_d1_chunk0"]
