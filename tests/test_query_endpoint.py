"""Integration tests for the HTTP API."""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, Mock
import sys
import os

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'backend'))


@pytest.fixture
def services():
    """Mock the search and generation services; keep sessions in memory."""
    from models.passage import Passage
    from services.session_store import SessionStore, InMemoryKeyValueBackend

    retriever = Mock()
    retriever.retrieve = AsyncMock(return_value=[
        Passage(text="Event X occurred.", metadata={"url": "http://a"})
    ])
    generator = Mock()
    generator.generate = AsyncMock(return_value="Event X occurred yesterday.")
    store = SessionStore(InMemoryKeyValueBackend(), ttl_seconds=None, timeout=1.0)

    return {'retriever': retriever, 'generator': generator, 'store': store}


@pytest.fixture
def client(services):
    """Create a test client wired to mocked services."""
    import main
    from services.orchestrator import RAGOrchestrator

    # TestClient is used without a context manager, so startup_event does not run
    main.orchestrator = RAGOrchestrator(
        retriever=services['retriever'],
        generator=services['generator'],
        session_store=services['store'],
        default_top_k=5,
        template_version="news-v1",
        allow_empty_context=False,
        retrieval_timeout=1.0,
        generation_timeout=1.0
    )
    yield TestClient(app=main.app)
    main.orchestrator = None


def create_session(client) -> str:
    response = client.post("/session")
    assert response.status_code == 200
    return response.json()["session_id"]


def test_health(client):
    """Test the liveness endpoints."""
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/health").json()["status"] == "healthy"


def test_end_to_end_conversation(client):
    """Test create → query → history for a single exchange."""
    session_id = create_session(client)

    response = client.post(
        "/query",
        json={"session_id": session_id, "query": "What happened?"}
    )

    assert response.status_code == 200
    assert response.json() == {
        "query": "What happened?",
        "answer": "Event X occurred yesterday.",
        "source": "http://a"
    }

    history = client.get("/history", params={"session_id": session_id})
    assert history.status_code == 200
    assert history.json() == {
        "session_id": session_id,
        "history": [
            {"role": "user", "text": "What happened?"},
            {"role": "bot", "text": "Event X occurred yesterday."}
        ]
    }


def test_create_session_returns_distinct_ids(client):
    """Test POST /session returns a fresh id each time."""
    assert create_session(client) != create_session(client)


def test_query_passes_n_results(client, services):
    """Test n_results is forwarded to retrieval."""
    session_id = create_session(client)

    client.post("/query", json={"session_id": session_id, "query": "q", "n_results": 3})

    services['retriever'].retrieve.assert_awaited_once_with("q", 3)


@pytest.mark.parametrize("body", [
    {"query": "What happened?"},
    {"session_id": "abc"},
    {"session_id": "", "query": "q"},
    {},
])
def test_query_missing_fields(client, services, body):
    """Test missing fields are a 400 and no upstream call is made."""
    response = client.post("/query", json=body)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"
    assert services['retriever'].retrieve.await_count == 0


def test_query_malformed_body(client):
    """Test a body that is not valid JSON is a 400, not a 422."""
    response = client.post(
        "/query",
        content="not json",
        headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_query_bad_n_results(client):
    """Test a non-positive n_results is rejected."""
    response = client.post("/query", json={"session_id": "abc", "query": "q", "n_results": 0})

    assert response.status_code == 400


def test_query_no_results(client, services):
    """Test empty retrieval is a 404 and generation is never called."""
    services['retriever'].retrieve.return_value = []
    session_id = create_session(client)

    response = client.post("/query", json={"session_id": session_id, "query": "q"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NO_RESULTS"
    assert services['generator'].generate.await_count == 0


def test_query_retrieval_unavailable(client, services):
    """Test a search service failure is a 502 with the failing stage."""
    from services.errors import RetrievalUnavailable
    services['retriever'].retrieve.side_effect = RetrievalUnavailable(
        "Search service returned status 500", details={"status_code": 500}
    )

    response = client.post("/query", json={"session_id": "abc", "query": "q"})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "RETRIEVAL_UNAVAILABLE"
    assert error["stage"] == "retrieving"


def test_query_malformed_passage_is_retrieval_unavailable(client, services):
    """Test a search result with non-string text is a 502, not a 500."""
    import httpx
    import main
    from services.retriever_client import RetrieverClient

    def handler(request):
        return httpx.Response(200, json={"results": [{"text": None, "metadata": {"url": "http://a"}}]})

    main.orchestrator.retriever = RetrieverClient(
        base_url="http://search.test",
        timeout=1.0,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )
    session_id = create_session(client)

    response = client.post("/query", json={"session_id": session_id, "query": "What happened?"})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "RETRIEVAL_UNAVAILABLE"
    assert error["stage"] == "retrieving"
    assert services["generator"].generate.await_count == 0


def test_query_generation_unavailable(client, services):
    """Test a generation service failure is a 502."""
    from services.errors import GenerationUnavailable
    services['generator'].generate.side_effect = GenerationUnavailable("quota")

    response = client.post("/query", json={"session_id": create_session(client), "query": "q"})

    assert response.status_code == 502
    assert response.json()["error"]["code"] == "GENERATION_UNAVAILABLE"


def test_query_unknown_session_keeps_answer(client):
    """Test an unknown session is a 404 that still carries the answer."""
    response = client.post("/query", json={"session_id": "missing", "query": "What happened?"})

    assert response.status_code == 404
    data = response.json()
    assert data["answer"] == "Event X occurred yesterday."
    assert data["source"] == "http://a"
    assert data["error"]["code"] == "SESSION_NOT_FOUND"
    assert data["error"]["stage"] == "persisting"


def test_query_store_unavailable_keeps_answer(client, services):
    """Test a store outage during persistence still returns the answer."""
    import main
    from services.errors import StoreUnavailable
    failing_store = Mock()
    failing_store.append = AsyncMock(side_effect=StoreUnavailable("down"))
    main.orchestrator.session_store = failing_store

    response = client.post("/query", json={"session_id": "abc", "query": "q"})

    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "Event X occurred yesterday."
    assert data["error"]["code"] == "STORE_UNAVAILABLE"
    assert data["error"]["stage"] == "persisting"
    assert data["source"] == "http://a"


def test_no_answer_generated_is_saved(client, services):
    """Test the no-answer sentinel is returned and stored as the bot turn."""
    services['generator'].generate.return_value = "No answer generated."
    session_id = create_session(client)

    response = client.post("/query", json={"session_id": session_id, "query": "q"})

    assert response.json()["answer"] == "No answer generated."
    history = client.get("/history", params={"session_id": session_id}).json()["history"]
    assert history[-1] == {"role": "bot", "text": "No answer generated."}


def test_history_missing_param(client):
    """Test GET /history without session_id is a 400."""
    response = client.get("/history")

    assert response.status_code == 400


def test_history_unknown_session(client):
    """Test GET /history for an unknown session is a 404."""
    response = client.get("/history", params={"session_id": "missing"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "SESSION_NOT_FOUND"


def test_delete_session(client):
    """Test DELETE /session clears history and a repeat is a 404."""
    session_id = create_session(client)

    response = client.request("DELETE", "/session", json={"session_id": session_id})
    assert response.status_code == 200
    assert response.json() == {"message": "Session cleared successfully."}

    assert client.get("/history", params={"session_id": session_id}).status_code == 404
    repeat = client.request("DELETE", "/session", json={"session_id": session_id})
    assert repeat.status_code == 404


def test_delete_session_missing_field(client):
    """Test DELETE /session without session_id is a 400."""
    assert client.request("DELETE", "/session", json={}).status_code == 400
    assert client.request("DELETE", "/session").status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
