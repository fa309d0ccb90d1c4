"""Unit tests for the serving layer."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from berkshire_rag.agent.graph import AgentAnswer
from berkshire_rag.agent.state import SourceCitation
from berkshire_rag.errors import EmbeddingError, LLMError, StorageError
from berkshire_rag.retrieval.models import SearchResponse, SearchResult
from berkshire_rag.serving.app import create_app


@pytest.fixture()
def retriever() -> MagicMock:
    fake = MagicMock()
    fake.search.return_value = SearchResponse(
        results=[SearchResult(text="Float is free.", year="2019", source="2019.pdf", similarity=0.91)],
        total_found=1,
    )
    return fake


@pytest.fixture()
def agent() -> MagicMock:
    fake = MagicMock()
    fake.ask.side_effect = lambda message, session_id: AgentAnswer(
        answer=f"Answer to: {message}",
        session_id=session_id,
        citations=[
            SourceCitation(citation_id="[1]", source="2019.pdf", year="2019"),
            SourceCitation(citation_id="[2]", source="2019.pdf", year="2019"),
        ],
    )
    return fake


@pytest.fixture()
def client(retriever: MagicMock, agent: MagicMock) -> TestClient:
    return TestClient(create_app(retriever=retriever, agent=agent))


def test_health_endpoint(client: TestClient) -> None:
    """GET /health should return 200 with status ok."""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


class TestSearchEndpoint:
    def test_returns_results(self, client: TestClient, retriever: MagicMock) -> None:
        response = client.post("/search", json={"query": "insurance float", "top_k": 3})

        assert response.status_code == 200
        body = response.json()
        assert body["total_found"] == 1
        assert body["results"][0]["year"] == "2019"
        retriever.search.assert_called_once_with("insurance float", top_k=3)

    def test_invalid_top_k(self, client: TestClient) -> None:
        assert client.post("/search", json={"query": "float", "top_k": 0}).status_code == 422

    def test_backend_failure_is_503(self, client: TestClient, retriever: MagicMock) -> None:
        retriever.search.side_effect = StorageError("chroma unreachable")

        response = client.post("/search", json={"query": "float"})

        assert response.status_code == 503
        assert "chroma unreachable" in response.json()["detail"]


class TestChatEndpoint:
    def test_answers_with_sources(self, client: TestClient, agent: MagicMock) -> None:
        response = client.post("/chat", json={"message": "What is float?", "session_id": "alice"})

        assert response.status_code == 200
        assert response.json() == {
            "answer": "Answer to: What is float?",
            "session_id": "alice",
            "sources": ["2019.pdf (2019)"],
            "tool_errors": [],
        }
        agent.ask.assert_called_once_with("What is float?", session_id="alice")

    def test_default_session(self, client: TestClient) -> None:
        assert client.post("/chat", json={"message": "Hi"}).json()["session_id"] == "default"

    def test_empty_message_rejected(self, client: TestClient) -> None:
        assert client.post("/chat", json={"message": ""}).status_code == 422

    def test_agent_failure_is_503(self, client: TestClient, agent: MagicMock) -> None:
        agent.ask.side_effect = EmbeddingError("quota exceeded")

        response = client.post("/chat", json={"message": "What is float?"})

        assert response.status_code == 503

    def test_chat_model_failure_is_503(self, client: TestClient, agent: MagicMock) -> None:
        agent.ask.side_effect = LLMError("Chat model call failed: 429 rate limited")

        response = client.post("/chat", json={"message": "What is float?"})

        assert response.status_code == 503
        assert "429 rate limited" in response.json()["detail"]
