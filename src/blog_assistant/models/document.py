"""Blog document models (as returned by the Sanity query API)."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BlogDocument(BaseModel):
    """A blog post read from the content source.

    Both the full indexing projection and the lightweight catalog projection
    deserialize into this model; the catalog simply leaves the rich text empty.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: Optional[str] = Field(default=None, alias="_id", description="Sanity document id")
    slug: Optional[str] = Field(default=None, description="URL slug (unique key)")
    title: str = Field(default="", description="Post title")
    body: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Portable Text blocks"
    )
    content: Optional[List[Dict[str, Any]]] = Field(
        default=None, description="Legacy Portable Text field used by older posts"
    )
    short_description: Optional[str] = Field(
        default=None, alias="shortDescription", description="Short summary"
    )
    published_at: Optional[datetime] = Field(
        default=None, alias="publishedAt", description="Publish timestamp"
    )
    categories: List[str] = Field(default_factory=list, description="Category titles, in order")

    @field_validator("title", mode="before")
    @classmethod
    def _coerce_title(cls, v):
        return v or ""

    @field_validator("categories", mode="before")
    @classmethod
    def _coerce_categories(cls, v):
        # Dereferenced categories come back as null when the reference is broken
        if not v:
            return []
        return [c for c in v if c]

    @field_validator("body", "content", mode="before")
    @classmethod
    def _coerce_blocks(cls, v):
        if not isinstance(v, list):
            return None
        return [block for block in v if isinstance(block, dict)]

    @property
    def rich_content(self) -> List[Dict[str, Any]]:
        """Portable Text blocks, preferring `body` over the legacy `content` field."""
        return self.body or self.content or []
