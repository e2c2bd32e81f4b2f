"""Offline indexing of blog posts into the vector store."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, List, Optional

from pydantic import BaseModel

from blog_assistant.clients.sanity_client import SanityClient, get_sanity_client
from blog_assistant.config import Settings, get_settings
from blog_assistant.models.chunk import ChunkRecord, TextChunk
from blog_assistant.models.document import BlogDocument
from blog_assistant.services.chunking_service import ChunkingService, get_chunking_service
from blog_assistant.services.embedding_service import EmbeddingService, get_embedding_service
from blog_assistant.services.normalizer import ContentNormalizer, get_normalizer
from blog_assistant.services.vector_store import VectorStore, create_vector_store
from blog_assistant.utils.errors import is_rate_limited
from blog_assistant.utils.logging import error_fields, get_logger

logger = get_logger("indexing_service")


class IndexingStats(BaseModel):
    """Counters for one indexing run."""

    documents_found: int = 0
    documents_processed: int = 0
    documents_skipped: int = 0
    documents_failed: int = 0
    chunks_created: int = 0
    chunks_indexed: int = 0
    chunks_failed: int = 0

    @property
    def errors(self) -> int:
        return self.documents_failed + self.chunks_failed


class IndexingService:
    """
    Turn every blog post into embedded chunk rows.

    Documents and chunks are processed one at a time: the embedding APIs are
    rate limited, so a short pause separates consecutive embedding calls and
    a long one follows any rate-limited failure. A failed chunk is counted
    and skipped; it never aborts the run.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        sanity_client: Optional[SanityClient] = None,
        normalizer: Optional[ContentNormalizer] = None,
        chunking_service: Optional[ChunkingService] = None,
        embedding_service: Optional[EmbeddingService] = None,
        vector_store: Optional[VectorStore] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.sanity_client = sanity_client or get_sanity_client()
        self.normalizer = normalizer or get_normalizer()
        self.chunking_service = chunking_service or get_chunking_service()
        self.embedding_service = embedding_service or get_embedding_service()
        self._vector_store = vector_store  # lazy, needs credentials
        self._sleep = sleep
        self._embedding_calls = 0
        self._next_delay = self.settings.indexing.request_delay

    @property
    def vector_store(self) -> VectorStore:
        if self._vector_store is None:
            self._vector_store = create_vector_store(self.settings, write_access=True)
        return self._vector_store

    async def run(
        self,
        slugs: Optional[List[str]] = None,
        replace_existing: Optional[bool] = None,
    ) -> IndexingStats:
        """
        Index the whole corpus, or only the posts in `slugs`.

        Raises:
            ConfigurationError: If required credentials are missing.
            ContentSourceError: If the posts cannot be fetched.
        """
        self.settings.require_indexing_credentials()
        replace = (
            self.settings.indexing.replace_existing if replace_existing is None else replace_existing
        )

        if slugs:
            documents = await self.sanity_client.fetch_blogs_by_slug(slugs)
        else:
            documents = await self.sanity_client.fetch_all_blogs()

        stats = IndexingStats(documents_found=len(documents))
        logger.info(f"Indexing {len(documents)} blog posts (replace_existing={replace})")

        for document in documents:
            await self.index_document(document, stats, replace)

        logger.info(
            "Indexing complete: "
            f"processed={stats.documents_processed}, skipped={stats.documents_skipped}, "
            f"chunks={stats.chunks_created}, indexed={stats.chunks_indexed}, errors={stats.errors}",
            extra=stats.model_dump(),
        )
        return stats

    def prepare_text(self, document: BlogDocument) -> Optional[str]:
        """Plain text to chunk for `document`, or None when it should be skipped."""
        if not document.slug:
            logger.info(f"Skipping document without slug: {document.id or document.title!r}")
            return None

        blocks = document.rich_content
        if not blocks:
            logger.info(f"Skipping {document.slug}: no rich text")
            return None

        plain_text = self.normalizer.to_plain_text(blocks)
        if len(plain_text) < self.settings.indexing.min_content_length:
            logger.info(f"Skipping {document.slug}: only {len(plain_text)} characters of text")
            return None

        if document.short_description:
            return f"{document.short_description}\n\n{plain_text}"
        return plain_text

    async def index_document(
        self, document: BlogDocument, stats: IndexingStats, replace_existing: bool = True
    ) -> None:
        """Chunk, embed and store one document, updating `stats` in place."""
        full_text = self.prepare_text(document)
        if full_text is None:
            stats.documents_skipped += 1
            return

        slug = document.slug or ""
        chunks = self.chunking_service.chunk_text(full_text)

        if replace_existing:
            try:
                await self.vector_store.delete_document(slug)
            except Exception as e:
                logger.error(
                    f"Could not clear existing rows for {slug}, skipping it: {e}", extra=error_fields(e)
                )
                stats.documents_failed += 1
                return

        stats.documents_processed += 1
        stats.chunks_created += len(chunks)
        logger.info(f"Processing {slug}: {len(chunks)} chunks")

        for chunk in chunks:
            await self._index_chunk(document, chunk, len(chunks), stats)

    async def _index_chunk(
        self, document: BlogDocument, chunk: TextChunk, total_chunks: int, stats: IndexingStats
    ) -> None:
        await self._pause_before_embedding()
        try:
            vector = await self.embedding_service.embed_document(chunk.text)
            record = ChunkRecord(
                blog_slug=document.slug or "",
                blog_title=document.title,
                chunk_index=chunk.chunk_index,
                total_chunks=total_chunks,
                content_chunk=chunk.text,
                embedding=vector,
                published_at=document.published_at,
                categories=document.categories,
                short_description=document.short_description,
            )
            await self.vector_store.insert_chunk(record)
        except Exception as e:
            stats.chunks_failed += 1
            if is_rate_limited(e):
                self._next_delay = self.settings.indexing.rate_limit_delay
                logger.warning(
                    f"Rate limited on {document.slug} chunk {chunk.chunk_index}; "
                    f"waiting {self._next_delay:.0f}s before the next call",
                    extra=error_fields(e),
                )
            else:
                logger.error(
                    f"Failed to index {document.slug} chunk {chunk.chunk_index}: {e}",
                    extra=error_fields(e),
                )
            return

        stats.chunks_indexed += 1
        logger.debug(f"Indexed {document.slug} chunk {chunk.chunk_index + 1}/{total_chunks}")

    async def _pause_before_embedding(self) -> None:
        if self._embedding_calls and self._next_delay > 0:
            await self._sleep(self._next_delay)
        self._embedding_calls += 1
        self._next_delay = self.settings.indexing.request_delay

    async def aclose(self) -> None:
        """Close pooled clients."""
        await self.embedding_service.aclose()
        await self.sanity_client.aclose()
        if self._vector_store is not None:
            await self._vector_store.aclose()
