"""Embedding generation service (provider-agnostic).

Every provider sits behind the same `embed(text, input_type) -> vector`
capability and owns the adapter for its response shape. Each call issues
exactly one upstream request; nothing is cached or batched.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Dict, List, Optional

import httpx

from blog_assistant.config import EmbeddingProvider, Settings, get_settings
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError, ValidationError
from blog_assistant.utils.http import read_json, send_request
from blog_assistant.utils.logging import get_logger

logger = get_logger("embedding_service")


class EmbeddingInputType(str, Enum):
    """What the embedded text will be used for."""

    DOCUMENT = "search_document"
    QUERY = "search_query"


def _as_vector(value: Any) -> Optional[List[float]]:
    if not isinstance(value, list) or not value:
        return None
    if all(isinstance(x, (int, float)) and not isinstance(x, bool) for x in value):
        return [float(x) for x in value]
    return None


class BaseEmbeddingProvider(ABC):
    """One embedding backend."""

    name: str = "embedding"

    def __init__(self, model: str, timeout: float) -> None:
        self.model = model
        self.timeout = timeout

    @abstractmethod
    async def embed(self, text: str, input_type: EmbeddingInputType) -> List[float]:
        """Return the embedding vector for `text`."""

    async def aclose(self) -> None:
        """Release pooled connections."""


class _HTTPEmbeddingProvider(BaseEmbeddingProvider):
    """Shared httpx plumbing for JSON-over-HTTP providers."""

    label: str = "Embedding"

    def __init__(
        self,
        model: str,
        timeout: float,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model, timeout)
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def _post_json(self, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Any:
        response = await send_request(
            self._get_client(),
            "POST",
            url,
            service=self.name,
            label=self.label,
            json=payload,
            headers=headers,
        )
        return read_json(response, service=self.name, label=self.label)

    def _unexpected_shape(self, payload: Any) -> RemoteServiceError:
        return RemoteServiceError(
            service=self.name,
            message=f"{self.label} API returned an unexpected response shape",
            response_body=str(payload)[:500],
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


class HuggingFaceEmbeddingProvider(_HTTPEmbeddingProvider):
    """HuggingFace Inference feature-extraction pipeline."""

    name = "huggingface"
    label = "HuggingFace"

    def __init__(
        self,
        model: str,
        url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model, timeout, transport)
        self.url = url
        self._token = token

    async def embed(self, text: str, input_type: EmbeddingInputType) -> List[float]:
        headers = {"Content-Type": "application/json"}
        # Anonymous calls work but get much lower rate limits
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"

        payload = await self._post_json(self.url, {"inputs": text}, headers)
        return self.parse_vector(payload)

    def parse_vector(self, payload: Any) -> List[float]:
        """Accept either a flat vector or a list holding one vector."""
        vector = _as_vector(payload)
        if vector is None and isinstance(payload, list) and payload:
            vector = _as_vector(payload[0])
        if vector is None:
            raise self._unexpected_shape(payload)
        return vector


class CohereEmbeddingProvider(_HTTPEmbeddingProvider):
    """Cohere v2 embed API."""

    name = "cohere"
    label = "Cohere"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://api.cohere.com",
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        super().__init__(model, timeout, transport)
        self.url = f"{base_url.rstrip('/')}/v2/embed"
        self._api_key = api_key

    async def embed(self, text: str, input_type: EmbeddingInputType) -> List[float]:
        headers = {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        payload = {
            "model": self.model,
            "texts": [text],
            "input_type": input_type.value,
            "embedding_types": ["float"],
        }
        data = await self._post_json(self.url, payload, headers)
        return self.parse_vector(data)

    def parse_vector(self, data: Any) -> List[float]:
        """Read `embeddings.float[0]`."""
        try:
            vector = _as_vector(data["embeddings"]["float"][0])
        except (KeyError, IndexError, TypeError):
            vector = None
        if vector is None:
            raise self._unexpected_shape(data)
        return vector


class OpenAIEmbeddingProvider(BaseEmbeddingProvider):
    """OpenAI embeddings through the official SDK."""

    name = "openai"

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(model, timeout)
        self._api_key = api_key
        self._base_url = base_url
        self._client = None  # lazy

    def _get_client(self):
        if self._client is not None:
            return self._client

        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(
            api_key=self._api_key,
            base_url=self._base_url,
            timeout=self.timeout,
            max_retries=0,
        )
        return self._client

    async def embed(self, text: str, input_type: EmbeddingInputType) -> List[float]:
        from openai import APIStatusError

        client = self._get_client()
        try:
            resp = await client.embeddings.create(model=self.model, input=text)
        except APIStatusError as e:
            raise RemoteServiceError(
                service=self.name,
                message=f"OpenAI API error: {e.status_code} - {e.message}",
                upstream_status=e.status_code,
                response_body=e.response.text if e.response is not None else None,
            ) from e
        except Exception as e:
            raise RemoteServiceError(
                service=self.name, message=f"OpenAI embedding request failed: {e}"
            ) from e

        vector = _as_vector(resp.data[0].embedding) if resp.data else None
        if vector is None:
            raise RemoteServiceError(
                service=self.name, message="OpenAI API returned an empty embedding"
            )
        return vector

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None


def create_embedding_provider(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> BaseEmbeddingProvider:
    """Build the provider selected by `EMBEDDING_PROVIDER`."""
    cfg = settings.embedding
    if cfg.missing_credentials:
        raise ConfigurationError(
            f"Embedding provider '{cfg.provider.value}' requires "
            f"{', '.join(cfg.missing_credentials)}",
            missing=cfg.missing_credentials,
        )

    if cfg.provider == EmbeddingProvider.HUGGINGFACE:
        return HuggingFaceEmbeddingProvider(
            model=cfg.resolved_model_name,
            url=cfg.resolved_huggingface_url,
            token=cfg.huggingface_token,
            timeout=cfg.timeout,
            transport=transport,
        )
    if cfg.provider == EmbeddingProvider.COHERE:
        return CohereEmbeddingProvider(
            model=cfg.resolved_model_name,
            api_key=cfg.cohere_api_key or "",
            base_url=cfg.cohere_base_url,
            timeout=cfg.timeout,
            transport=transport,
        )
    if cfg.provider == EmbeddingProvider.OPENAI:
        return OpenAIEmbeddingProvider(
            model=cfg.resolved_model_name,
            api_key=cfg.openai_api_key or "",
            base_url=cfg.openai_base_url,
            timeout=cfg.timeout,
        )

    raise ConfigurationError(f"Unsupported embedding provider: {cfg.provider}")


class EmbeddingService:
    """
    Embed one text per call with the configured provider.

    The same provider serves indexing (`embed_document`) and chat
    (`embed_query`) so stored and query vectors live in one space.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        provider: Optional[BaseEmbeddingProvider] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._provider = provider  # lazy

    @property
    def provider(self) -> BaseEmbeddingProvider:
        if self._provider is None:
            self._provider = create_embedding_provider(self.settings)
        return self._provider

    async def embed(
        self,
        text: str,
        input_type: EmbeddingInputType = EmbeddingInputType.QUERY,
    ) -> List[float]:
        """
        Generate the embedding for a single text.

        Raises:
            ValidationError: If the text is empty.
            ConfigurationError: If the provider credentials are missing.
            RemoteServiceError: If the provider call fails or returns a bad vector.
        """
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        provider = self.provider
        vector = await provider.embed(text, input_type)

        expected = self.settings.embedding.dimension
        if expected is not None and len(vector) != expected:
            raise RemoteServiceError(
                service=provider.name,
                message="Embedding dimension mismatch",
                details={"expected_dimension": expected, "actual_dimension": len(vector)},
            )

        logger.debug(
            f"Embedding generated: provider={provider.name}, model={provider.model}, "
            f"input_type={input_type.value}, dimension={len(vector)}"
        )
        return vector

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed(text, EmbeddingInputType.QUERY)

    async def embed_document(self, text: str) -> List[float]:
        return await self.embed(text, EmbeddingInputType.DOCUMENT)

    async def aclose(self) -> None:
        if self._provider is not None:
            await self._provider.aclose()


# Global service instance
_embedding_service: Optional[EmbeddingService] = None


def get_embedding_service() -> EmbeddingService:
    """Get the global embedding service instance."""
    global _embedding_service
    if _embedding_service is None:
        _embedding_service = EmbeddingService()
    return _embedding_service
