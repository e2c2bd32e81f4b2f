"""Chunk models for indexing and retrieval."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TextChunk(BaseModel):
    """A chunk of text produced by the chunking service."""

    chunk_index: int = Field(..., ge=0, description="0-based index of this chunk within the document")
    text: str = Field(..., description="Chunk text content")


class ChunkRecord(BaseModel):
    """One persisted row: chunk text, its vector and denormalized document metadata."""

    blog_slug: str
    blog_title: str
    chunk_index: int = Field(..., ge=0)
    total_chunks: int = Field(..., ge=1)
    content_chunk: str
    embedding: List[float]
    published_at: Optional[datetime] = None
    categories: List[str] = Field(default_factory=list)
    short_description: Optional[str] = None

    def metadata(self) -> Dict[str, Any]:
        """Metadata object stored alongside the chunk."""
        return {
            "publishedAt": self.published_at.isoformat() if self.published_at else None,
            "categories": list(self.categories),
            "chunkIndex": self.chunk_index,
            "totalChunks": self.total_chunks,
            "shortDescription": self.short_description,
        }

    def to_row(self) -> Dict[str, Any]:
        """Row shape expected by the `blog_embeddings` table."""
        return {
            "blog_slug": self.blog_slug,
            "blog_title": self.blog_title,
            "content_chunk": self.content_chunk,
            "embedding": self.embedding,
            "metadata": self.metadata(),
        }


class RetrievedChunk(BaseModel):
    """A search hit. Field names match the `match_blog_embeddings` result rows."""

    model_config = ConfigDict(extra="ignore")

    blog_slug: str
    blog_title: str = ""
    content_chunk: str
    similarity: float

    @field_validator("blog_title", "content_chunk", mode="before")
    @classmethod
    def _coerce_text(cls, v):
        # Rows written before titles were required carry null here
        return v or ""
