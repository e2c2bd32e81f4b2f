"""Unit tests for the offline indexing job."""

from unittest.mock import AsyncMock, MagicMock, call, patch

import pytest

from blog_assistant.models.chunk import TextChunk
from blog_assistant.models.document import BlogDocument
from blog_assistant.services.chunking_service import ChunkingService
from blog_assistant.services.indexing_service import IndexingService, IndexingStats
from blog_assistant.services.normalizer import ContentNormalizer
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError

LONG_PARAGRAPH = (
    "Retrieval augmented generation pairs a search index with a language model. "
    "Each question is embedded and compared with stored passages. "
    "The closest passages are pasted into the prompt before the model answers."
)


@pytest.fixture
def document(make_block):
    return BlogDocument.model_validate(
        {
            "_id": "post-1",
            "slug": "rag-chatbot",
            "title": "Building a RAG chatbot",
            "body": [make_block(LONG_PARAGRAPH)],
            "publishedAt": "2024-03-05T10:00:00Z",
            "categories": ["AI"],
            "shortDescription": "How the chat works.",
        }
    )


@pytest.fixture
def sanity_client(document):
    client = MagicMock()
    client.fetch_all_blogs = AsyncMock(return_value=[document])
    client.fetch_blogs_by_slug = AsyncMock(return_value=[document])
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def embedding_service():
    service = MagicMock()
    service.embed_document = AsyncMock(return_value=[0.1, 0.2, 0.3])
    service.aclose = AsyncMock()
    return service


@pytest.fixture
def vector_store():
    store = MagicMock()
    store.delete_document = AsyncMock()
    store.insert_chunk = AsyncMock()
    store.aclose = AsyncMock()
    return store


@pytest.fixture
def three_chunks():
    chunker = MagicMock()
    chunker.chunk_text.return_value = [
        TextChunk(chunk_index=0, text="first chunk"),
        TextChunk(chunk_index=1, text="second chunk"),
        TextChunk(chunk_index=2, text="third chunk"),
    ]
    return chunker


@pytest.fixture
def sleep():
    return AsyncMock()


def _service(settings, sanity_client, embedding_service, vector_store, sleep, chunking_service=None):
    return IndexingService(
        settings=settings,
        sanity_client=sanity_client,
        normalizer=ContentNormalizer(),
        chunking_service=chunking_service or ChunkingService(max_length=80, min_length=10),
        embedding_service=embedding_service,
        vector_store=vector_store,
        sleep=sleep,
    )


class TestPrepareText:
    def test_summary_is_prefixed(self, settings, sanity_client, embedding_service, vector_store, sleep, document):
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)
        text = service.prepare_text(document)
        assert text.startswith("How the chat works.\n\nRetrieval augmented generation")

    def test_skip_rules(self, settings, sanity_client, embedding_service, vector_store, sleep, make_block):
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)

        no_slug = BlogDocument(title="Draft", body=[make_block(LONG_PARAGRAPH)])
        no_body = BlogDocument(slug="empty", title="Empty")
        too_short = BlogDocument(slug="short", title="Short", body=[make_block("Just a few words.")])

        assert service.prepare_text(no_slug) is None
        assert service.prepare_text(no_body) is None
        assert service.prepare_text(too_short) is None


class TestRun:
    @pytest.mark.asyncio
    async def test_indexes_every_chunk(self, settings, sanity_client, embedding_service, vector_store, sleep):
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)

        stats = await service.run()

        assert stats.documents_found == 1
        assert stats.documents_processed == 1
        assert stats.chunks_created > 1
        assert stats.chunks_indexed == stats.chunks_created
        assert stats.errors == 0

        vector_store.delete_document.assert_awaited_once_with("rag-chatbot")
        assert vector_store.insert_chunk.await_count == stats.chunks_created
        records = [c.args[0] for c in vector_store.insert_chunk.await_args_list]
        assert [r.chunk_index for r in records] == list(range(stats.chunks_created))
        assert {r.total_chunks for r in records} == {stats.chunks_created}
        assert records[0].blog_slug == "rag-chatbot"
        assert records[0].categories == ["AI"]
        assert records[0].short_description == "How the chat works."
        assert records[0].content_chunk.startswith("How the chat works.")

        # Short pause between consecutive embedding calls, none before the first
        assert sleep.await_args_list == [call(1.0)] * (stats.chunks_created - 1)

    @pytest.mark.asyncio
    async def test_skipped_documents_are_counted(
        self, settings, sanity_client, embedding_service, vector_store, sleep, document, make_block
    ):
        sanity_client.fetch_all_blogs.return_value = [
            document,
            BlogDocument(slug="empty", title="Empty"),
            BlogDocument(slug="short", title="Short", body=[make_block("Tiny.")]),
        ]
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)

        stats = await service.run()

        assert stats.documents_found == 3
        assert stats.documents_processed == 1
        assert stats.documents_skipped == 2
        vector_store.delete_document.assert_awaited_once_with("rag-chatbot")

    @pytest.mark.asyncio
    async def test_rate_limit_waits_longer_and_continues(
        self, settings, sanity_client, embedding_service, vector_store, sleep, three_chunks
    ):
        embedding_service.embed_document.side_effect = [
            RemoteServiceError(service="huggingface", message="HuggingFace API error: 429 - slow down", upstream_status=429),
            [0.1, 0.2],
            [0.3, 0.4],
        ]
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep, three_chunks)

        stats = await service.run()

        assert stats.chunks_created == 3
        assert stats.chunks_failed == 1
        assert stats.chunks_indexed == 2
        assert sleep.await_args_list == [call(60.0), call(1.0)]
        assert [c.args[0].chunk_index for c in vector_store.insert_chunk.await_args_list] == [1, 2]

    @pytest.mark.asyncio
    async def test_insert_failure_is_counted(
        self, settings, sanity_client, embedding_service, vector_store, sleep, three_chunks
    ):
        vector_store.insert_chunk.side_effect = [None, RemoteServiceError(service="supabase", message="boom"), None]
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep, three_chunks)

        stats = await service.run()

        assert stats.chunks_indexed == 2
        assert stats.chunks_failed == 1
        assert sleep.await_args_list == [call(1.0), call(1.0)]

    @pytest.mark.asyncio
    async def test_delete_failure_skips_document(
        self, settings, sanity_client, embedding_service, vector_store, sleep
    ):
        vector_store.delete_document.side_effect = RemoteServiceError(service="supabase", message="boom")
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)

        stats = await service.run()

        assert stats.documents_failed == 1
        assert stats.documents_processed == 0
        embedding_service.embed_document.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_replace(self, settings, sanity_client, embedding_service, vector_store, sleep, three_chunks):
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep, three_chunks)

        stats = await service.run(replace_existing=False)

        vector_store.delete_document.assert_not_awaited()
        assert stats.chunks_indexed == 3

    @pytest.mark.asyncio
    async def test_selected_slugs(self, settings, sanity_client, embedding_service, vector_store, sleep, three_chunks):
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep, three_chunks)

        await service.run(slugs=["rag-chatbot"])

        sanity_client.fetch_blogs_by_slug.assert_awaited_once_with(["rag-chatbot"])
        sanity_client.fetch_all_blogs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_missing_credentials(self, settings, sanity_client, embedding_service, vector_store, sleep):
        settings.supabase.service_role_key = None
        service = _service(settings, sanity_client, embedding_service, vector_store, sleep)

        with pytest.raises(ConfigurationError):
            await service.run()
        sanity_client.fetch_all_blogs.assert_not_awaited()


def test_stats_errors():
    stats = IndexingStats(documents_failed=1, chunks_failed=2)
    assert stats.errors == 3


def test_defaults_use_shared_instances(settings):
    with patch("blog_assistant.services.indexing_service.get_sanity_client") as sanity, patch(
        "blog_assistant.services.indexing_service.get_normalizer"
    ) as normalizer, patch("blog_assistant.services.indexing_service.get_chunking_service") as chunker, patch(
        "blog_assistant.services.indexing_service.get_embedding_service"
    ) as embedding:
        service = IndexingService(settings=settings)

    assert service.sanity_client is sanity.return_value
    assert service.normalizer is normalizer.return_value
    assert service.chunking_service is chunker.return_value
    assert service.embedding_service is embedding.return_value
