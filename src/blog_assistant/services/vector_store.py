"""Vector store backends for chunk persistence and similarity search."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError
from qdrant_client import QdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchValue,
    PointStruct,
    VectorParams,
)

from blog_assistant.config import Settings, VectorBackend, get_settings
from blog_assistant.models.chunk import ChunkRecord, RetrievedChunk
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError
from blog_assistant.utils.http import read_json, send_request
from blog_assistant.utils.logging import get_logger

logger = get_logger("vector_store")

# Deterministic namespace for generating stable point IDs from (slug, chunk_index)
_POINT_ID_NAMESPACE = uuid.UUID("3f0c2a5e-8d41-4b7a-9e55-1c2d7b9a6f10")


def rank_matches(
    matches: Iterable[RetrievedChunk], match_threshold: float, match_count: int
) -> List[RetrievedChunk]:
    """Keep matches at or above the threshold, best first, at most `match_count`."""
    kept = [m for m in matches if m.similarity >= match_threshold]
    kept.sort(key=lambda m: m.similarity, reverse=True)
    return kept[: max(0, match_count)]


class VectorStore(ABC):
    """Append-mostly store of chunk rows with server-side similarity search."""

    name: str = "vector_store"

    @abstractmethod
    async def insert_chunk(self, record: ChunkRecord) -> None:
        """Persist one chunk row."""

    @abstractmethod
    async def delete_document(self, slug: str) -> None:
        """Remove every row owned by the document `slug`."""

    @abstractmethod
    async def search(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[RetrievedChunk]:
        """Return the nearest chunks, similarity descending."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check connectivity."""

    async def aclose(self) -> None:
        """Release pooled connections."""


class SupabaseVectorStore(VectorStore):
    """
    Supabase table + `match_blog_embeddings` RPC over PostgREST.

    Rows keep the exact column names the RPC reads and returns
    (`blog_slug`, `blog_title`, `content_chunk`, `embedding`, `metadata`).
    """

    name = "supabase"

    def __init__(
        self,
        url: str,
        api_key: str,
        table: str = "blog_embeddings",
        match_function: str = "match_blog_embeddings",
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = f"{url.rstrip('/')}/rest/v1"
        self.table = table
        self.match_function = match_function
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        return await send_request(
            self._client, method, path, service=self.name, label="Supabase", **kwargs
        )

    async def insert_chunk(self, record: ChunkRecord) -> None:
        await self._send(
            "POST",
            f"/{self.table}",
            json=record.to_row(),
            headers={"Prefer": "return=minimal"},
        )

    async def delete_document(self, slug: str) -> None:
        await self._send(
            "DELETE",
            f"/{self.table}",
            params={"blog_slug": f"eq.{slug}"},
            headers={"Prefer": "return=minimal"},
        )
        logger.info(f"Deleted existing rows for document: {slug}")

    async def search(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[RetrievedChunk]:
        response = await self._send(
            "POST",
            f"/rpc/{self.match_function}",
            json={
                "query_embedding": query_embedding,
                "match_threshold": match_threshold,
                "match_count": match_count,
            },
        )
        rows = read_json(response, service=self.name, label="Supabase")
        if not isinstance(rows, list):
            raise RemoteServiceError(
                service=self.name,
                message="Supabase RPC returned an unexpected response shape",
                response_body=str(rows)[:500],
            )
        matches: List[RetrievedChunk] = []
        for row in rows:
            try:
                matches.append(RetrievedChunk.model_validate(row))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed match row: {e.error_count()} errors")
        return rank_matches(matches, match_threshold, match_count)

    async def ping(self) -> bool:
        try:
            await self._send("GET", f"/{self.table}", params={"select": "blog_slug", "limit": 1})
            return True
        except RemoteServiceError as e:
            logger.warning(f"Supabase connection check failed: {e}")
            return False

    async def aclose(self) -> None:
        await self._client.aclose()


class QdrantVectorStore(VectorStore):
    """
    Qdrant collection of chunk points.

    Point ids are derived from (slug, chunk_index), so re-indexing a document
    overwrites its points instead of appending duplicates.
    """

    name = "qdrant"

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        collection: str = "blog_embeddings",
        timeout: int = 30,
        client: Optional[QdrantClient] = None,
    ) -> None:
        self.collection = collection
        self._url = url
        self._api_key = api_key
        self._timeout = timeout
        self._client = client
        self._collection_ready = False

    def _get_client(self) -> QdrantClient:
        if self._client is None:
            self._client = QdrantClient(url=self._url, api_key=self._api_key, timeout=self._timeout)
        return self._client

    @staticmethod
    def make_point_id(slug: str, chunk_index: int) -> str:
        """Create a stable UUID point id for a chunk."""
        return str(uuid.uuid5(_POINT_ID_NAMESPACE, f"{slug}:{chunk_index}"))

    @staticmethod
    def _slug_filter(slug: str) -> Filter:
        return Filter(must=[FieldCondition(key="blog_slug", match=MatchValue(value=slug))])

    async def _run(self, action: str, fn, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except RemoteServiceError:
            raise
        except Exception as e:
            raise RemoteServiceError(
                service=self.name,
                message=f"Qdrant {action} failed: {e}",
                details={"collection": self.collection},
            ) from e

    async def ensure_collection(self, vector_size: int) -> None:
        """Ensure the collection exists with the right vector size."""
        if self._collection_ready:
            return

        def _ensure() -> None:
            client = self._get_client()
            if not client.collection_exists(self.collection):
                client.create_collection(
                    collection_name=self.collection,
                    vectors_config=VectorParams(size=vector_size, distance=Distance.COSINE),
                )
                return

            info = client.get_collection(self.collection)
            try:
                current_size = info.config.params.vectors.size  # type: ignore[union-attr]
            except AttributeError:
                # Named vectors; nothing to compare against
                current_size = None
            if current_size is not None and int(current_size) != int(vector_size):
                raise RemoteServiceError(
                    service=self.name,
                    message="Qdrant collection vector size mismatch",
                    details={
                        "collection": self.collection,
                        "expected": vector_size,
                        "actual": int(current_size),
                    },
                )

        await self._run("ensure collection", _ensure)
        self._collection_ready = True
        logger.info(f"Qdrant collection ensured: {self.collection} (vector_size={vector_size})")

    async def insert_chunk(self, record: ChunkRecord) -> None:
        await self.ensure_collection(len(record.embedding))

        row = record.to_row()
        vector = row.pop("embedding")
        point = PointStruct(
            id=self.make_point_id(record.blog_slug, record.chunk_index),
            vector=vector,
            payload=row,
        )

        def _upsert() -> None:
            self._get_client().upsert(collection_name=self.collection, points=[point], wait=True)

        await self._run("upsert", _upsert)

    async def delete_document(self, slug: str) -> None:
        def _delete() -> bool:
            client = self._get_client()
            if not client.collection_exists(self.collection):
                return False
            client.delete(
                collection_name=self.collection,
                points_selector=FilterSelector(filter=self._slug_filter(slug)),
                wait=True,
            )
            return True

        if await self._run("delete", _delete):
            logger.info(f"Deleted existing points for document: {slug}")

    async def search(
        self, query_embedding: List[float], match_threshold: float, match_count: int
    ) -> List[RetrievedChunk]:
        def _query():
            return self._get_client().query_points(
                collection_name=self.collection,
                query=query_embedding,
                limit=match_count,
                score_threshold=match_threshold,
                with_payload=True,
            )

        response = await self._run("query", _query)
        matches: List[RetrievedChunk] = []
        for point in response.points:
            payload: Dict[str, Any] = point.payload or {}
            matches.append(
                RetrievedChunk(
                    blog_slug=payload.get("blog_slug", ""),
                    blog_title=payload.get("blog_title", ""),
                    content_chunk=payload.get("content_chunk", ""),
                    similarity=float(point.score),
                )
            )
        return rank_matches(matches, match_threshold, match_count)

    async def ping(self) -> bool:
        try:
            await self._run("get collections", lambda: self._get_client().get_collections())
            return True
        except RemoteServiceError as e:
            logger.warning(f"Qdrant connection check failed: {e}")
            return False

    async def aclose(self) -> None:
        if self._client is not None:
            await asyncio.to_thread(self._client.close)


def create_vector_store(
    settings: Optional[Settings] = None,
    write_access: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> VectorStore:
    """
    Build the configured vector store.

    Indexing needs `write_access` and uses the Supabase service role key; chat
    prefers the anonymous key and falls back to the service role key.
    """
    settings = settings or get_settings()

    if settings.retrieval.backend == VectorBackend.QDRANT:
        if not settings.qdrant.url:
            raise ConfigurationError("QDRANT_URL is required", missing=["QDRANT_URL"])
        return QdrantVectorStore(
            url=settings.qdrant.url,
            api_key=settings.qdrant.api_key,
            collection=settings.qdrant.collection,
            timeout=settings.qdrant.timeout,
        )

    supabase = settings.supabase
    if write_access:
        api_key = supabase.service_role_key
        key_name = "SUPABASE_SERVICE_ROLE_KEY"
    else:
        api_key = supabase.anon_key or supabase.service_role_key
        key_name = "SUPABASE_ANON_KEY"

    missing = [name for name, value in (("SUPABASE_URL", supabase.url), (key_name, api_key)) if not value]
    if missing:
        raise ConfigurationError(
            f"Missing required configuration: {', '.join(missing)}", missing=missing
        )

    return SupabaseVectorStore(
        url=supabase.url or "",
        api_key=api_key or "",
        table=supabase.table,
        match_function=supabase.match_function,
        timeout=supabase.timeout,
        transport=transport,
    )
