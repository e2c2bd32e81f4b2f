"""Tests for the chat and health endpoints."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.responses import Response, StreamingResponse
from fastapi.testclient import TestClient

from blog_assistant.api.v1.chat import chat, format_sse
from blog_assistant.config import StreamFormat
from blog_assistant.main import app
from blog_assistant.middleware import is_streamed
from blog_assistant.models.chat import ChatMessage, ChatRequest
from blog_assistant.services.chat_service import ChatService, get_chat_service
from blog_assistant.services.persona_service import DEFAULT_PERSONA
from blog_assistant.services.prompt_builder import PromptBuilder
from blog_assistant.utils.errors import RemoteServiceError


async def _stream(*texts, error=None):
    for text in texts:
        yield text
    if error is not None:
        raise error


class _Completion:
    """Completion stream double that records being closed."""

    def __init__(self, *texts):
        self._texts = list(texts)
        self.aclose = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self._texts:
            raise StopAsyncIteration
        return self._texts.pop(0)


@pytest.fixture
def embedding_service():
    service = MagicMock()
    service.embed_query = AsyncMock(return_value=[0.1, 0.2])
    return service


@pytest.fixture
def vector_store():
    store = MagicMock()
    store.search = AsyncMock(return_value=[])
    store.ping = AsyncMock(return_value=True)
    return store


@pytest.fixture
def llm_service():
    service = MagicMock()
    service.open_stream = AsyncMock(return_value=_stream("Hello", " from", " the blog"))
    return service


@pytest.fixture
def chat_service(settings, embedding_service, vector_store, llm_service):
    sanity_client = MagicMock()
    sanity_client.fetch_catalog = AsyncMock(return_value=[])
    persona_service = MagicMock()
    persona_service.get_persona.return_value = DEFAULT_PERSONA
    return ChatService(
        settings=settings,
        embedding_service=embedding_service,
        vector_store=vector_store,
        sanity_client=sanity_client,
        persona_service=persona_service,
        prompt_builder=PromptBuilder("", "/blogs"),
        llm_service=llm_service,
    )


@pytest.fixture
def client(chat_service):
    app.dependency_overrides[get_chat_service] = lambda: chat_service
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestChatEndpoint:
    def test_streams_plain_text(self, client):
        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "What do you write about?"}]}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert response.text == "Hello from the blog"

    @pytest.mark.parametrize(
        "body",
        [
            {"messages": []},
            {},
            {"messages": [{"role": "assistant", "content": "Hi there!"}]},
        ],
    )
    def test_missing_messages(self, client, embedding_service, body):
        response = client.post("/api/v1/chat", json=body)

        assert response.status_code == 400
        assert response.json() == {"error": "Messages are required"}
        embedding_service.embed_query.assert_not_awaited()

    def test_malformed_body(self, client):
        response = client.post("/api/v1/chat", json={"messages": "hello"})
        assert response.status_code == 422

    def test_upstream_failure_returns_details(self, client, embedding_service):
        embedding_service.embed_query.side_effect = RemoteServiceError(
            service="huggingface",
            message="HuggingFace API error: 503 - Model is loading",
            upstream_status=503,
        )

        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]}
        )

        assert response.status_code == 500
        assert response.json() == {
            "error": "Failed to process chat request",
            "details": "HuggingFace API error: 503 - Model is loading",
        }

    def test_missing_configuration(self, client, settings):
        settings.groq.api_key = None

        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]}
        )

        assert response.status_code == 500
        assert "GROQ_API_KEY" in response.json()["details"]

    def test_search_failure_still_answers(self, client, vector_store):
        vector_store.search.side_effect = RemoteServiceError(service="supabase", message="down")

        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]}
        )

        assert response.status_code == 200
        assert response.text == "Hello from the blog"

    def test_completion_closed_once_after_full_response(self, client, llm_service):
        completion = _Completion("Hello")
        llm_service.open_stream.return_value = completion

        response = client.post("/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

        assert response.text == "Hello"
        completion.aclose.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unread_body_still_closes_completion(self, chat_service, llm_service):
        completion = _Completion("never", " sent")
        llm_service.open_stream.return_value = completion

        response = await chat(
            ChatRequest(messages=[ChatMessage(role="user", content="Hi")]), chat_service=chat_service
        )

        assert isinstance(response, StreamingResponse)
        await response.background()
        completion.aclose.assert_awaited_once()


class TestServerSentEvents:
    def test_format_sse_splits_lines(self):
        assert format_sse("a\nb") == "data: a\ndata: b\n\n"
        assert format_sse("{}", event="error") == "event: error\ndata: {}\n\n"

    def test_sse_stream(self, client, settings):
        settings.chat.stream_format = StreamFormat.SSE

        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]}
        )

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        events = [e for e in response.text.split("\n\n") if e]
        assert events[0] == f"data: {json.dumps({'text': 'Hello'})}"
        assert events[-1] == "data: [DONE]"
        assert len(events) == 4

    def test_sse_error_event(self, client, settings, llm_service):
        settings.chat.stream_format = StreamFormat.SSE
        llm_service.open_stream.return_value = _stream(
            "Hel", error=RemoteServiceError(service="llm", message="LLM stream failed: reset")
        )

        response = client.post(
            "/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]}
        )

        events = [e for e in response.text.split("\n\n") if e]
        assert events[0] == f"data: {json.dumps({'text': 'Hel'})}"
        assert events[-1].startswith("event: error\ndata: ")
        payload = json.loads(events[-1].split("data: ", 1)[1])
        assert payload == {
            "error": "Failed to process chat request",
            "details": "LLM stream failed: reset",
        }
        assert "data: [DONE]" not in response.text


class TestHealthEndpoints:
    def test_health(self, client):
        for path in ("/health", "/api/v1/health"):
            response = client.get(path)
            assert response.status_code == 200
            assert response.json()["status"] == "healthy"

    def test_ready(self, client):
        response = client.get("/api/v1/ready")
        assert response.status_code == 200
        assert response.json()["checks"] == {"configuration": True, "vector_store": True}

    def test_not_ready_when_vector_store_down(self, client, vector_store):
        vector_store.ping.return_value = False
        response = client.get("/ready")
        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"

    def test_not_ready_without_credentials(self, client, settings, vector_store):
        settings.groq.api_key = None
        response = client.get("/api/v1/ready")
        assert response.status_code == 503
        assert response.json()["checks"]["configuration"] is False
        vector_store.ping.assert_not_awaited()


def test_request_id_header(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


def test_generated_request_id(client):
    response = client.get("/health")
    assert len(response.headers["X-Request-ID"]) == 32


def test_server_timing_marks_streamed_answers(client):
    health = client.get("/health")
    answer = client.post("/api/v1/chat", json={"messages": [{"role": "user", "content": "Hi"}]})

    assert health.headers["Server-Timing"].startswith("app;dur=")
    assert "ttfb" not in health.headers["Server-Timing"]
    assert answer.headers["Server-Timing"].endswith(';desc="ttfb"')


def test_is_streamed():
    assert is_streamed(Response(content="ok")) is False
    assert is_streamed(StreamingResponse(iter(["a"]))) is True
