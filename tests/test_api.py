import pytest
from fastapi.testclient import TestClient

from conftest import ORG
from server.api.api_app import create_app
from services.embedding_sync.SyncEngine import SyncEngine
from shared.models.embedding import SourceType

HEADERS = {"X-API-Key": "secret"}


@pytest.fixture
def engine(helper_config, source, rag, embedder) -> SyncEngine:
    return SyncEngine(helper_config, source, rag, embedder)


@pytest.fixture
def client(engine, helper_config, monkeypatch):
    monkeypatch.setenv("APP_API_KEY", "secret")
    with TestClient(create_app(engine=engine, config=helper_config)) as test_client:
        yield test_client


class TestAuth:
    def test_missing_key(self, client):
        assert client.post(f"/sync/{ORG}").status_code == 401

    def test_wrong_key(self, client):
        assert client.post(f"/sync/{ORG}", headers={"X-API-Key": "nope"}).status_code == 401

    def test_unconfigured_key(self, client, monkeypatch):
        monkeypatch.delenv("APP_API_KEY")
        assert client.post(f"/sync/{ORG}", headers=HEADERS).status_code == 503


class TestSyncEndpoints:
    def test_full_sync(self, client, source):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        response = client.post(f"/sync/{ORG}", headers=HEADERS)
        assert response.status_code == 200
        body = response.json()
        assert body["organization_id"] == ORG
        assert body["phases"]["context"]["created"] == 1
        assert body["totals"]["created"] == 1
        assert body["verification"]["success"] is True

    def test_listing_failure_is_bad_gateway(self, client, source):
        source.failing_types = {SourceType.POLICY}
        assert client.post(f"/sync/{ORG}", headers=HEADERS).status_code == 502

    def test_single_record(self, client, source):
        source.add(SourceType.MANUAL_ANSWER, id="42", question="Q", answer="A")
        response = client.post(
            f"/sync/{ORG}/records", headers=HEADERS, json={"source_type": "manual_answer", "source_id": "42"},
        )
        assert response.status_code == 200
        assert response.json()["embedding_id"] == "manual_answer_42"

    def test_single_record_not_found(self, client):
        response = client.post(
            f"/sync/{ORG}/records", headers=HEADERS, json={"source_type": "policy", "source_id": "missing"},
        )
        assert response.status_code == 404

    def test_unknown_source_type(self, client):
        response = client.post(
            f"/sync/{ORG}/records", headers=HEADERS, json={"source_type": "attachment", "source_id": "1"},
        )
        assert response.status_code == 422

    def test_delete(self, client, source, rag):
        source.add(SourceType.CONTEXT, id="c1", question="Q", answer="A")
        client.post(f"/sync/{ORG}", headers=HEADERS)

        response = client.delete(f"/sync/{ORG}/records/context/c1", headers=HEADERS)
        assert response.status_code == 200
        assert response.json() == {"success": True, "deleted_count": 1, "error": None}
        assert rag.ids_for("context", "c1") == []


class TestSearchEndpoints:
    def test_search(self, client, source):
        source.add(SourceType.CONTEXT, id="c1", question="Where is data hosted?", answer="EU region")
        client.post(f"/sync/{ORG}", headers=HEADERS)

        response = client.post(
            "/search", headers=HEADERS,
            json={"query": "Question: Where is data hosted?\n\nAnswer: EU region", "organization_id": ORG},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["results"][0]["context_question"] == "Where is data hosted?"

    def test_search_failure_is_bad_gateway(self, client, rag):
        rag.fail_query = True
        response = client.post("/search", headers=HEADERS, json={"query": "x", "organization_id": ORG})
        assert response.status_code == 502

    def test_batch_search(self, client):
        response = client.post(
            "/search/batch", headers=HEADERS, json={"queries": ["a", "b"], "organization_id": ORG},
        )
        assert response.status_code == 200
        assert response.json() == {"results": [[], []]}
