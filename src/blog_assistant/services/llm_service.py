"""LLM Service for streaming chat completions through LiteLLM.

The default model is Groq's llama-3.3-70b-versatile; any LiteLLM model string
works as long as its provider credentials are present in the environment.
"""

import os
from typing import Any, AsyncIterator, Dict, List, Optional

from litellm import acompletion

from blog_assistant.config import Settings, get_settings
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError
from blog_assistant.utils.logging import get_logger

logger = get_logger("llm_service")


def _extract_delta_text(chunk: Any) -> str:
    """Pull the incremental text out of a streaming chunk (dict or object form)."""
    if isinstance(chunk, dict):
        choices = chunk.get("choices") or []
        if not choices:
            return ""
        choice = choices[0]
        delta = choice.get("delta") or choice.get("message") or {}
        return delta.get("content") or ""

    choices = getattr(chunk, "choices", None) or []
    if not choices:
        return ""
    delta = getattr(choices[0], "delta", None)
    if delta is None:
        return ""
    return getattr(delta, "content", None) or ""


class LLMService:
    """Service for streaming completions.

    Handles:
    - LiteLLM environment setup from settings
    - Credential validation before any request is made
    - Opening the stream and relaying text deltas in arrival order
    - Closing the upstream stream when the consumer stops early
    """

    def __init__(self, settings: Optional[Settings] = None):
        """Initialize LLM service with configuration."""
        self.settings = settings or get_settings()
        self.model = self.settings.groq.model

        self._configure_litellm_environment()

    def _configure_litellm_environment(self) -> None:
        """Configure LiteLLM environment variables from settings.

        LiteLLM reads API keys from environment variables.
        """
        if self.settings.groq.api_key:
            os.environ["GROQ_API_KEY"] = self.settings.groq.api_key

        logger.debug("LiteLLM environment variables configured")

    def _validate_model_configuration(self, model: str) -> None:
        """Validate that the required API keys are configured for the model.

        Raises:
            ConfigurationError: If required API keys are not configured.
        """
        if model.startswith("groq/") and not self.settings.groq.has_groq:
            raise ConfigurationError(
                message=f"Groq API key not configured for model {model}",
                missing=["GROQ_API_KEY"],
                details={"model": model},
            )

    async def _call_llm(self, messages: List[Dict[str, str]]) -> Any:
        """Open a streaming completion via LiteLLM.

        Raises:
            ConfigurationError: If the model's credentials are missing.
            RemoteServiceError: If the completion request fails.
        """
        self._validate_model_configuration(self.model)

        groq = self.settings.groq
        litellm_params = {
            "model": self.model,
            "messages": messages,
            "stream": True,
            "temperature": groq.temperature,
            "max_tokens": groq.max_tokens,
            "top_p": groq.top_p,
            "timeout": groq.timeout,
        }

        try:
            logger.debug(f"Calling LLM model: {self.model}, messages={len(messages)}")
            return await acompletion(**litellm_params)
        except Exception as e:
            logger.error(
                f"LLM call failed for model {self.model}: {e}",
                extra={
                    "service": "llm",
                    "model": self.model,
                    "upstream_status": getattr(e, "status_code", None),
                    "error_type": type(e).__name__,
                },
            )
            raise RemoteServiceError(
                service="llm",
                message=f"LLM call failed: {e}",
                upstream_status=getattr(e, "status_code", None),
                details={"model": self.model, "error_type": type(e).__name__},
            ) from e

    async def open_stream(self, messages: List[Dict[str, str]]) -> "CompletionStream":
        """
        Open the completion stream and return an iterator of text deltas.

        The request is sent before this coroutine returns, so opening
        failures surface here rather than midway through a response.

        Args:
            messages: System turn followed by the conversation history.

        Returns:
            CompletionStream yielding non-empty text deltas in arrival order.
            A failure while iterating raises RemoteServiceError.
        """
        response = await self._call_llm(messages)
        logger.info(f"Completion stream opened: model={self.model}")
        return CompletionStream(response, self.model)


class CompletionStream:
    """Text deltas of one open completion.

    `aclose()` releases the upstream response whether or not iteration ever
    started, and is safe to call more than once.
    """

    def __init__(self, response: Any, model: str):
        self.model = model
        self.chunks_sent = 0
        self._response = response
        self._deltas = self._iter_deltas()
        self._upstream_closed = False

    def __aiter__(self) -> "CompletionStream":
        return self

    async def __anext__(self) -> str:
        return await self._deltas.__anext__()

    async def _iter_deltas(self) -> AsyncIterator[str]:
        try:
            async for chunk in self._response:
                text = _extract_delta_text(chunk)
                if text:
                    self.chunks_sent += 1
                    yield text
        except Exception as e:
            logger.error(
                f"LLM stream failed after {self.chunks_sent} chunks: {e}",
                extra={"service": "llm", "model": self.model, "error_type": type(e).__name__},
            )
            raise RemoteServiceError(
                service="llm",
                message=f"LLM stream failed: {e}",
                details={"model": self.model, "chunks_sent": self.chunks_sent},
            ) from e
        finally:
            await self._close_upstream()

        logger.info(f"Completion stream finished: chunks={self.chunks_sent}")

    async def aclose(self) -> None:
        await self._deltas.aclose()
        await self._close_upstream()

    async def _close_upstream(self) -> None:
        if self._upstream_closed:
            return
        self._upstream_closed = True
        close = getattr(self._response, "aclose", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.debug(f"Ignoring error while closing completion stream: {e}")


# Global service instance
_llm_service: Optional[LLMService] = None


def get_llm_service() -> LLMService:
    """Get the global LLM service instance."""
    global _llm_service
    if _llm_service is None:
        _llm_service = LLMService()
    return _llm_service
