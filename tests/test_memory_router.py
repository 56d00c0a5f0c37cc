"""
Tests for the memory HTTP API.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeFirebaseStore, FakeLLM
from services.memory_integration import MemoryIntegration
from services.memory_router import memory_router
from utils.config import Settings
from utils.errors import ValidationError
from vector_memory_db.models.schemas import SimilaritySearchResult


def build_app(with_memory=True):
    app = FastAPI()
    app.include_router(memory_router)
    if with_memory:
        vector_service = AsyncMock()
        vector_service.query_vectors.return_value = [
            SimilaritySearchResult(
                id="c1/s1", score=0.88, metadata={"content": "likes stoicism", "session_id": "c1", "level": "recent"}
            )
        ]
        vector_service.health_check.return_value = {"status": "healthy"}
        app.state.memory = MemoryIntegration(
            Settings(THEME_CACHE_PATH=None, RETRY_DELAY_MS=0, TOPIC_TRACKING=False),
            store=FakeFirebaseStore(),
            vector_service=vector_service,
            llm_service=FakeLLM(),
        )
    return app


@pytest.fixture
def client():
    with TestClient(build_app()) as test_client:
        yield test_client


def start(client, user_id="u1"):
    response = client.post("/memory/sessions", json={"user_id": user_id})
    assert response.status_code == 200
    return response.json()["id"]


class TestSessions:

    def test_start_and_resume(self, client):
        first = start(client)
        assert start(client) == first
        assert start(client, "u2") != first

    def test_blank_user_is_rejected(self, client):
        assert client.post("/memory/sessions", json={"user_id": ""}).status_code == 422

    def test_complete(self, client):
        conversation_id = start(client)

        response = client.post(f"/memory/{conversation_id}/complete")

        assert response.json() == {"conversation_id": conversation_id, "status": "completed"}
        assert start(client) != conversation_id

    def test_complete_missing_conversation(self, client):
        assert client.post("/memory/missing/complete").status_code == 404


class TestMessages:

    def test_add_and_list_messages(self, client):
        conversation_id = start(client)
        for content in ("first", "second"):
            response = client.post(
                f"/memory/{conversation_id}/messages", json={"message": {"kind": "user", "content": content}}
            )
            assert response.status_code == 200
            assert response.json()["role"] == "user"
            assert response.json()["id"]

        listing = client.get(f"/memory/{conversation_id}/messages", params={"limit": 10}).json()
        assert [m["content"] for m in listing["messages"]] == ["first", "second"]
        assert listing["total_count"] == 2

    def test_add_message_to_missing_conversation(self, client):
        response = client.post("/memory/missing/messages", json={"message": {"kind": "user", "content": "hi"}})
        assert response.status_code == 404

    def test_tool_call_without_calls_is_rejected(self, client):
        conversation_id = start(client)
        response = client.post(
            f"/memory/{conversation_id}/messages",
            json={"message": {"kind": "assistant_tool_call", "tool_calls": []}},
        )
        assert response.status_code == 422

    def test_message_pair(self, client):
        conversation_id = start(client)
        body = {
            "user": {"kind": "user", "content": "q"},
            "assistant": {"kind": "assistant_text", "content": "a"},
        }

        response = client.post(f"/memory/{conversation_id}/pairs", json=body)

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert len(response.json()["message_ids"]) == 2

    def test_message_pair_missing_conversation(self, client):
        body = {
            "user": {"kind": "user", "content": "q"},
            "assistant": {"kind": "assistant_text", "content": "a"},
        }

        response = client.post("/memory/missing/pairs", json=body)

        assert response.status_code == 404
        assert response.json()["detail"]["error"]["type"] == "CONVERSATION_NOT_FOUND"

    def test_message_pair_invalid_conversation_id(self):
        app = build_app()
        app.state.memory.store.get_data = AsyncMock(
            side_effect=ValidationError("Invalid Firebase path conversations/conv.1/metadata")
        )
        body = {
            "user": {"kind": "user", "content": "q"},
            "assistant": {"kind": "assistant_text", "content": "a"},
        }

        with TestClient(app) as client:
            response = client.post("/memory/conv.1/pairs", json=body)

        assert response.status_code == 422
        assert response.json()["detail"]["error"]["operation"] == "GET_METADATA"

    def test_context_and_summaries(self, client):
        conversation_id = start(client)

        context = client.get(f"/memory/{conversation_id}/context").json()
        summaries = client.get(f"/memory/{conversation_id}/summaries").json()

        assert context["immediate"] == []
        assert context["current_topic"]["status"] == "active"
        assert summaries["summaries"] == []


class TestSearchAndHealth:

    def test_search(self, client):
        response = client.get("/memory/search", params={"user_id": "u1", "query": "stoicism"})

        memories = response.json()["memories"]
        assert memories[0]["content"] == "likes stoicism"
        assert memories[0]["relevance_score"] == 0.88

    def test_health_without_memory(self):
        with TestClient(build_app(with_memory=False)) as client:
            assert client.get("/memory/health").json()["status"] == "unhealthy"
            assert client.post("/memory/sessions", json={"user_id": "u1"}).status_code == 503

    def test_health_with_memory(self, client):
        health = client.get("/memory/health").json()
        assert health["vector_store"] == {"status": "healthy"}
        assert health["initialized"] is False
