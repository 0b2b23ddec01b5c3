from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from conftest import ScriptedEmbeddingProvider, make_coordinator
from docassist.errors import ProviderUnavailable
from docassist.main import app
from docassist.service import get_assistant

CONTRACT = b"The agreement lasts for two years.\n\nEither party may terminate with thirty days notice."


@pytest.fixture
def client_for(assistant_factory):
    def _build(**kwargs) -> TestClient:
        assistant = assistant_factory(**kwargs)
        app.dependency_overrides[get_assistant] = lambda: assistant
        return TestClient(app)

    yield _build
    app.dependency_overrides.clear()


def _upload(client: TestClient, content: bytes = CONTRACT, name: str = "contract.txt", **kwargs):
    return client.post(
        "/documents",
        files={"file": (name, content, "text/plain")},
        **kwargs,
    )


def test_upload_then_query_returns_citations(client_for) -> None:
    client = client_for()

    upload = _upload(client, headers={"X-Caller-Id": "alice"})
    assert upload.status_code == 201
    document = upload.json()
    assert document["status"] == "indexed"
    assert document["owner_id"] == "alice"
    assert document["chunk_count"] >= 1
    assert len(document["content_hash"]) == 64

    response = client.post(
        "/query",
        json={"question": "How long does the agreement last?", "top_k": 2},
        headers={"X-Caller-Id": "alice"},
    )
    assert response.status_code == 200
    payload = response.json()
    assert "two years" in payload["answer"]
    assert payload["fallback"] is False
    assert payload["states"][-1] == "answered"
    assert payload["citations"]
    first = payload["citations"][0]
    assert first["document_id"] == document["document_id"]
    assert set(first) == {"chunk_id", "document_id", "sequence", "score", "snippet"}


def test_query_from_other_caller_sees_no_documents(client_for) -> None:
    client = client_for()
    _upload(client, headers={"X-Caller-Id": "alice"})

    response = client.post(
        "/query",
        json={"question": "How long does the agreement last?"},
        headers={"X-Caller-Id": "mallory"},
    )

    assert response.status_code == 200
    assert response.json()["citations"] == []


def test_document_lifecycle_endpoints(client_for) -> None:
    client = client_for()
    document_id = _upload(client, data={"document_id": "contract-1"}).json()["document_id"]
    assert document_id == "contract-1"

    fetched = client.get("/documents/contract-1")
    assert fetched.status_code == 200
    assert fetched.json()["file_name"] == "contract.txt"

    listed = client.get("/documents", params={"status": "indexed"})
    assert [item["document_id"] for item in listed.json()] == ["contract-1"]

    reindexed = client.post("/documents/contract-1/reindex")
    assert reindexed.status_code == 200
    assert reindexed.json()["status"] == "indexed"

    deleted = client.delete("/documents/contract-1")
    assert deleted.status_code == 200

    missing = client.get("/documents/contract-1")
    assert missing.status_code == 404
    assert missing.json()["error"]["kind"] == "document_not_found"


def test_foreign_document_is_hidden(client_for) -> None:
    client = client_for()
    _upload(client, data={"document_id": "private"}, headers={"X-Caller-Id": "alice"})

    assert client.get("/documents/private", headers={"X-Caller-Id": "bob"}).status_code == 404
    assert client.delete("/documents/private", headers={"X-Caller-Id": "bob"}).status_code == 404


def test_unsupported_upload_returns_422_with_document(client_for) -> None:
    client = client_for()

    response = client.post("/documents", files={"file": ("photo.png", b"\x89PNG", "image/png")})

    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "failed"
    assert body["error_kind"] == "unsupported_format"


def test_provider_outage_upload_returns_503(client_for) -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down"), dimension=128)
    client = client_for(embedding_provider=provider, coordinator=make_coordinator(max_attempts=2))

    response = _upload(client)

    assert response.status_code == 503
    assert response.json()["error_kind"] == "retries_exhausted"


def test_unexpected_ingest_error_returns_500(client_for) -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=OSError("connection reset"), dimension=128)
    client = client_for(embedding_provider=provider)

    response = _upload(client)

    assert response.status_code == 500
    body = response.json()
    assert body["status"] == "failed"
    assert body["error_kind"] == "internal"


def test_query_provider_outage_maps_to_error_body(client_for) -> None:
    provider = ScriptedEmbeddingProvider(fail_forever=ProviderUnavailable("down"), dimension=128)
    client = client_for(embedding_provider=provider, coordinator=make_coordinator(max_attempts=2))

    response = client.post("/query", json={"question": "Anything?"})

    assert response.status_code == 503
    error = response.json()["error"]
    assert error["kind"] == "retries_exhausted"
    assert error["attempts"] == 2


def test_query_validation(client_for) -> None:
    client = client_for()

    assert client.post("/query", json={"question": ""}).status_code == 422
    assert client.post("/query", json={"question": "ok", "top_k": -1}).status_code == 422


def test_health_and_readiness(client_for) -> None:
    client = client_for()

    assert client.get("/healthz").text == "ok"
    ready = client.get("/readyz")
    assert ready.status_code == 200
    assert ready.json()["vector_store"] == "memory"
