"""Sanity query API client for blog documents."""

import json
from typing import Any, Dict, List, Optional

import httpx

from blog_assistant.config import SanitySettings, get_settings
from blog_assistant.models.document import BlogDocument
from blog_assistant.utils.errors import ConfigurationError, ContentSourceError
from blog_assistant.utils.http import read_json, send_request
from blog_assistant.utils.logging import get_logger

logger = get_logger("sanity_client")

# Full projection used by the indexing job
ALL_BLOGS_QUERY = """*[_type == "blog"] | order(publishedAt desc) {
  _id,
  title,
  "slug": slug.current,
  body,
  content,
  publishedAt,
  "categories": categories[]->title,
  shortDescription
}"""

# Lightweight projection used for the chat catalog
PARTIAL_BLOGS_QUERY = """*[_type == "blog"] | order(publishedAt desc) {
  _id,
  title,
  "slug": slug.current,
  publishedAt,
  "categories": categories[]->title,
  shortDescription
}"""

BLOGS_BY_SLUG_QUERY = """*[_type == "blog" && slug.current in $slugs] | order(publishedAt desc) {
  _id,
  title,
  "slug": slug.current,
  body,
  content,
  publishedAt,
  "categories": categories[]->title,
  shortDescription
}"""


class SanityClient:
    """
    Read-only client for the Sanity HTTP query API.

    Handles:
    - Running GROQ queries against the configured dataset
    - Fetching the full blog corpus for indexing
    - Fetching the lightweight blog catalog for the chat prompt
    """

    def __init__(
        self,
        settings: Optional[SanitySettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings().sanity
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def query_url(self) -> str:
        """Query endpoint for the configured project and dataset."""
        if not self.settings.project_id:
            raise ConfigurationError(
                "SANITY_PROJECT_ID is required", missing=["SANITY_PROJECT_ID"]
            )
        host = "apicdn" if self.settings.use_cdn else "api"
        return (
            f"https://{self.settings.project_id}.{host}.sanity.io"
            f"/v{self.settings.api_version}/data/query/{self.settings.dataset}"
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Accept": "application/json"}
            if self.settings.token:
                headers["Authorization"] = f"Bearer {self.settings.token}"
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def query(self, groq: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        Run a GROQ query and return its `result`.

        Args:
            groq: GROQ query string
            params: Optional query parameters; values are JSON encoded as `$name`

        Raises:
            ConfigurationError: If no project id is configured
            ContentSourceError: If the request fails or the response is malformed
        """
        url = self.query_url
        query_params: Dict[str, str] = {"query": groq}
        for name, value in (params or {}).items():
            query_params[f"${name}"] = _encode_param(value)

        response = await send_request(
            self._get_client(),
            "GET",
            url,
            service="sanity",
            label="Sanity",
            error_cls=ContentSourceError,
            params=query_params,
        )
        data = read_json(response, service="sanity", label="Sanity", error_cls=ContentSourceError)
        if not isinstance(data, dict) or "result" not in data:
            raise ContentSourceError(
                "Sanity response has no result", response_body=str(data)[:500]
            )
        return data["result"]

    async def _fetch_documents(self, groq: str, params: Optional[Dict[str, Any]] = None) -> List[BlogDocument]:
        result = await self.query(groq, params)
        if not isinstance(result, list):
            raise ContentSourceError("Sanity query did not return a list")

        documents: List[BlogDocument] = []
        for raw in result:
            if not isinstance(raw, dict):
                continue
            try:
                documents.append(BlogDocument.model_validate(raw))
            except ValueError as e:
                logger.warning(f"Skipping malformed blog document {raw.get('_id')}: {e}")
        return documents

    async def fetch_all_blogs(self) -> List[BlogDocument]:
        """Fetch every blog post with its rich text, newest first."""
        documents = await self._fetch_documents(ALL_BLOGS_QUERY)
        logger.info(f"Fetched {len(documents)} blog documents from Sanity")
        return documents

    async def fetch_blogs_by_slug(self, slugs: List[str]) -> List[BlogDocument]:
        """Fetch the blog posts whose slug is in `slugs`."""
        documents = await self._fetch_documents(BLOGS_BY_SLUG_QUERY, {"slugs": list(slugs)})
        logger.info(f"Fetched {len(documents)} of {len(slugs)} requested blog documents")
        return documents

    async def fetch_catalog(self) -> List[BlogDocument]:
        """Fetch title, slug, summary, categories and date of every post."""
        return await self._fetch_documents(PARTIAL_BLOGS_QUERY)

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None


def _encode_param(value: Any) -> str:
    return json.dumps(value)


# Global client instance
_sanity_client: Optional[SanityClient] = None


def get_sanity_client() -> SanityClient:
    """Get the global Sanity client instance."""
    global _sanity_client
    if _sanity_client is None:
        _sanity_client = SanityClient()
    return _sanity_client
