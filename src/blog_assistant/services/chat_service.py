"""Chat orchestration: embed the question, retrieve, assemble, stream.

Per-request stages:
    Received -> Embedding -> Retrieving -> Assembling -> Streaming -> Completed | Failed

Steps run strictly in sequence and nothing is retried. Retrieval (vector
search and the blog catalog) is best-effort and degrades to empty results;
embedding and completion failures fail the request.
"""

from __future__ import annotations

from enum import Enum
from typing import AsyncIterator, Dict, List, Optional, Sequence

from blog_assistant.clients.sanity_client import SanityClient, get_sanity_client
from blog_assistant.config import Settings, get_settings
from blog_assistant.models.chat import ChatMessage
from blog_assistant.models.chunk import RetrievedChunk
from blog_assistant.models.document import BlogDocument
from blog_assistant.services.embedding_service import EmbeddingService, get_embedding_service
from blog_assistant.services.llm_service import LLMService, get_llm_service
from blog_assistant.services.persona_service import PersonaService, get_persona_service
from blog_assistant.services.prompt_builder import PromptBuilder
from blog_assistant.services.vector_store import VectorStore, create_vector_store
from blog_assistant.utils.errors import ValidationError
from blog_assistant.utils.logging import error_fields, get_logger

logger = get_logger("chat_service")

MESSAGES_REQUIRED = "Messages are required"


class ChatStage(str, Enum):
    """Lifecycle of one chat request."""

    RECEIVED = "received"
    EMBEDDING = "embedding"
    RETRIEVING = "retrieving"
    ASSEMBLING = "assembling"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


class ChatRun:
    """Tracks and logs the stage transitions of a single request."""

    def __init__(self) -> None:
        self.stage = ChatStage.RECEIVED
        logger.debug("Chat stage: received")

    def advance(self, stage: ChatStage) -> None:
        logger.debug(f"Chat stage: {self.stage.value} -> {stage.value}")
        self.stage = stage

    def fail(self, error: Exception) -> None:
        logger.warning(
            f"Chat failed during {self.stage.value}: {type(error).__name__}: {error}",
            extra={"stage": self.stage.value, **error_fields(error)},
        )
        self.stage = ChatStage.FAILED


class ChatStream:
    """The answer's text deltas, relayed from the completion stream.

    Iterating to the end marks the run completed; an error marks it failed.
    `aclose()` releases the completion stream even if iteration never
    started, and may be called more than once.
    """

    def __init__(self, stream: AsyncIterator[str], run: ChatRun) -> None:
        self._stream = stream
        self._run = run
        self._closed = False

    def __aiter__(self) -> ChatStream:
        return self

    async def __anext__(self) -> str:
        try:
            return await self._stream.__anext__()
        except StopAsyncIteration:
            self._run.advance(ChatStage.COMPLETED)
            raise
        except Exception as e:
            self._run.fail(e)
            raise

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._run.stage == ChatStage.STREAMING:
            logger.info("Chat stream closed by client before completion", extra={"stage": "streaming"})
        close = getattr(self._stream, "aclose", None)
        if close is not None:
            await close()


class ChatService:
    """Runs the retrieval-augmented chat pipeline for one request at a time.

    The service holds no per-request state; concurrent requests share only
    the pooled HTTP clients of its collaborators.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        sanity_client: Optional[SanityClient] = None,
        persona_service: Optional[PersonaService] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        llm_service: Optional[LLMService] = None,
    ):
        self.settings = settings or get_settings()
        # Collaborators default to the process-wide instances
        self.embedding_service = embedding_service or get_embedding_service()
        self._vector_store = vector_store  # lazy, needs credentials
        self.sanity_client = sanity_client or get_sanity_client()
        self.persona_service = persona_service or get_persona_service()
        self.prompt_builder = prompt_builder or PromptBuilder(
            self.settings.prompt.blog_base_url, self.settings.prompt.blog_path_prefix
        )
        self.llm_service = llm_service or get_llm_service()

    @property
    def vector_store(self) -> VectorStore:
        if self._vector_store is None:
            self._vector_store = create_vector_store(self.settings, write_access=False)
        return self._vector_store

    @staticmethod
    def extract_question(messages: Optional[Sequence[ChatMessage]]) -> str:
        """Return the latest non-empty user message.

        Raises:
            ValidationError: If there is no such message.
        """
        for message in reversed(messages or []):
            if message.role == "user" and message.content.strip():
                return message.content
        raise ValidationError(MESSAGES_REQUIRED)

    def _history(self, messages: Sequence[ChatMessage]) -> List[Dict[str, str]]:
        recent = list(messages)[-self.settings.chat.max_history_messages :]
        return [m.to_llm_message() for m in recent]

    async def start_chat(self, messages: Optional[Sequence[ChatMessage]]) -> ChatStream:
        """
        Run every step up to opening the completion stream.

        Returns once the completion service has accepted the request, so all
        failures that should produce an error status are raised from here.

        Raises:
            ValidationError: No user message.
            ConfigurationError: Missing upstream credentials.
            RemoteServiceError: Embedding or completion request failed.
        """
        run = ChatRun()
        try:
            question = self.extract_question(messages)
            self.settings.require_chat_credentials()

            run.advance(ChatStage.EMBEDDING)
            query_embedding = await self.embedding_service.embed_query(question)

            run.advance(ChatStage.RETRIEVING)
            retrieved = await self._retrieve(query_embedding)
            catalog = await self._fetch_catalog()

            run.advance(ChatStage.ASSEMBLING)
            system_prompt = self.prompt_builder.build_system_prompt(
                persona=self.persona_service.get_persona(),
                retrieved=retrieved,
                catalog=catalog,
                match_threshold=self.settings.retrieval.match_threshold,
            )
            llm_messages = [{"role": "system", "content": system_prompt}]
            llm_messages.extend(self._history(messages or []))

            run.advance(ChatStage.STREAMING)
            stream = await self.llm_service.open_stream(llm_messages)
        except Exception as e:
            run.fail(e)
            raise

        logger.info(
            f"Chat request streaming: matches={len(retrieved)}, "
            f"catalog={len(catalog) if catalog else 0}, history={len(llm_messages) - 1}"
        )
        return ChatStream(stream, run)

    async def _retrieve(self, query_embedding: List[float]) -> List[RetrievedChunk]:
        retrieval = self.settings.retrieval
        try:
            matches = await self.vector_store.search(
                query_embedding, retrieval.match_threshold, retrieval.match_count
            )
        except Exception as e:
            logger.warning(
                f"Vector search failed, continuing without blog context: {e}",
                extra=error_fields(e),
            )
            return []
        logger.debug(f"Vector search returned {len(matches)} matches")
        return matches

    async def _fetch_catalog(self) -> Optional[List[BlogDocument]]:
        if not self.settings.chat.include_catalog or not self.settings.sanity.is_configured:
            return None
        try:
            return await self.sanity_client.fetch_catalog()
        except Exception as e:
            logger.warning(
                f"Blog catalog unavailable, continuing without it: {e}",
                extra=error_fields(e),
            )
            return None

    async def ping_vector_store(self) -> bool:
        return await self.vector_store.ping()

    async def aclose(self) -> None:
        """Close pooled clients."""
        await self.embedding_service.aclose()
        await self.sanity_client.aclose()
        if self._vector_store is not None:
            await self._vector_store.aclose()


# Global service instance
_chat_service: Optional[ChatService] = None


def get_chat_service() -> ChatService:
    """Get the global chat service instance."""
    global _chat_service
    if _chat_service is None:
        _chat_service = ChatService()
    return _chat_service


async def close_chat_service() -> None:
    """Close the global chat service, if it was created."""
    global _chat_service
    if _chat_service is not None:
        await _chat_service.aclose()
        _chat_service = None
