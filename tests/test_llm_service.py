"""Unit tests for LLM Service."""

import os
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from blog_assistant.services.llm_service import LLMService, _extract_delta_text
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError


async def _stream(*chunks, error=None):
    for chunk in chunks:
        yield chunk
    if error is not None:
        raise error


def _delta(text):
    return {"choices": [{"delta": {"content": text}}]}


class _Upstream:
    """Completion response that records being closed."""

    def __init__(self):
        self.aclose = AsyncMock()

    def __aiter__(self):
        return self

    async def __anext__(self):
        raise StopAsyncIteration


@pytest.fixture
def llm_service(settings):
    """Create LLM service instance for testing."""
    with patch.dict(os.environ):
        yield LLMService(settings)


@pytest.fixture
def mock_messages():
    """Sample messages for testing."""
    return [
        {"role": "system", "content": "You are a blog assistant."},
        {"role": "user", "content": "What is RAG?"},
    ]


async def _collect(stream):
    return [text async for text in stream]


class TestDeltaExtraction:
    def test_dict_chunk(self):
        assert _extract_delta_text(_delta("Hel")) == "Hel"

    def test_object_chunk(self):
        chunk = SimpleNamespace(choices=[SimpleNamespace(delta=SimpleNamespace(content="lo"))])
        assert _extract_delta_text(chunk) == "lo"

    def test_empty_chunks(self):
        assert _extract_delta_text({"choices": []}) == ""
        assert _extract_delta_text(_delta(None)) == ""
        assert _extract_delta_text(SimpleNamespace(choices=[])) == ""


class TestModelValidation:
    def test_groq_model_without_key(self, settings):
        settings.groq.api_key = None
        with patch.dict(os.environ):
            service = LLMService(settings)
        with pytest.raises(ConfigurationError) as exc_info:
            service._validate_model_configuration("groq/llama-3.3-70b-versatile")
        assert exc_info.value.missing == ["GROQ_API_KEY"]

    def test_groq_key_is_exported_for_litellm(self, settings):
        with patch.dict(os.environ, {}, clear=False):
            LLMService(settings)
            assert os.environ["GROQ_API_KEY"] == "gsk-test"


class TestStreaming:
    @pytest.mark.asyncio
    async def test_deltas_in_order(self, llm_service, mock_messages):
        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            mock_completion.return_value = _stream(_delta("Hel"), _delta(""), _delta("lo"))

            stream = await llm_service.open_stream(mock_messages)
            assert await _collect(stream) == ["Hel", "lo"]

            kwargs = mock_completion.call_args.kwargs
            assert kwargs["model"] == "groq/llama-3.3-70b-versatile"
            assert kwargs["messages"] == mock_messages
            assert kwargs["stream"] is True
            assert kwargs["temperature"] == 0.7
            assert kwargs["max_tokens"] == 1024
            assert kwargs["top_p"] == 1.0

    @pytest.mark.asyncio
    async def test_open_failure_raises_before_streaming(self, llm_service, mock_messages):
        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            mock_completion.side_effect = Exception("401 invalid api key")

            with pytest.raises(RemoteServiceError) as exc_info:
                await llm_service.open_stream(mock_messages)

            assert "LLM call failed" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_missing_key_never_calls_model(self, settings, mock_messages):
        settings.groq.api_key = None
        with patch.dict(os.environ):
            service = LLMService(settings)
        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            with pytest.raises(ConfigurationError):
                await service.open_stream(mock_messages)
            mock_completion.assert_not_called()

    @pytest.mark.asyncio
    async def test_mid_stream_failure(self, llm_service, mock_messages):
        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            mock_completion.return_value = _stream(_delta("Hel"), error=RuntimeError("reset"))

            stream = await llm_service.open_stream(mock_messages)
            received = []
            with pytest.raises(RemoteServiceError, match="LLM stream failed"):
                async for text in stream:
                    received.append(text)

            assert received == ["Hel"]

    @pytest.mark.asyncio
    async def test_early_close_closes_upstream(self, llm_service, mock_messages):
        closed = []

        async def upstream():
            try:
                yield _delta("a")
                yield _delta("b")
            finally:
                closed.append(True)

        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            mock_completion.return_value = upstream()

            stream = await llm_service.open_stream(mock_messages)
            assert await stream.__anext__() == "a"
            await stream.aclose()

        assert closed == [True]

    @pytest.mark.asyncio
    async def test_close_before_iteration_closes_upstream(self, llm_service, mock_messages):
        upstream = _Upstream()

        with patch(
            "blog_assistant.services.llm_service.acompletion", new_callable=AsyncMock
        ) as mock_completion:
            mock_completion.return_value = upstream

            stream = await llm_service.open_stream(mock_messages)
            await stream.aclose()
            await stream.aclose()

        upstream.aclose.assert_awaited_once()
