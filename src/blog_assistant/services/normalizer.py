"""Portable Text to plain text conversion for embedding."""

import html
import re
from typing import Any, Dict, List, Optional

from bs4 import BeautifulSoup
from portabletext_html import PortableTextRenderer

from blog_assistant.utils.logging import get_logger

logger = get_logger("normalizer")

IMAGE_PLACEHOLDER = "[Image]"

_WHITESPACE_RE = re.compile(r"\s+")


def _image_serializer(node: dict, context: Optional[Any], list_item: bool) -> str:
    return f"<span>{IMAGE_PLACEHOLDER}</span>"


def _code_serializer(node: dict, context: Optional[Any], list_item: bool) -> str:
    return f"<pre><code>{html.escape(str(node.get('code') or ''))}</code></pre>"


class ContentNormalizer:
    """
    Convert a blog post's rich text into a single plain-text string.

    Rendering goes through HTML so block, list and mark handling stays in one
    place; tags are then stripped, whitespace collapsed and image placeholders
    removed. A rendering failure degrades to the literal text runs of the tree.
    """

    def __init__(self) -> None:
        self._serializers = {
            "image": _image_serializer,
            "code": _code_serializer,
        }

    def to_plain_text(self, blocks: Optional[List[Dict[str, Any]]]) -> str:
        """Return the plain text of a Portable Text block list ("" when empty)."""
        if not blocks:
            return ""

        try:
            markup = PortableTextRenderer(blocks, custom_serializers=self._serializers).render()
        except Exception as e:
            logger.warning(
                f"Portable Text rendering failed, falling back to raw text runs: {e}",
                extra={"error_type": type(e).__name__, "blocks": len(blocks)},
            )
            return self._collapse(self._extract_text_runs(blocks))

        return self._strip_markup(markup)

    def _strip_markup(self, markup: str) -> str:
        text = BeautifulSoup(markup, "html.parser").get_text(" ")
        text = self._collapse(text).replace(IMAGE_PLACEHOLDER, "")
        return self._collapse(text)

    @staticmethod
    def _extract_text_runs(blocks: List[Dict[str, Any]]) -> str:
        parts: List[str] = []
        for block in blocks:
            children = block.get("children") if isinstance(block, dict) else None
            if not isinstance(children, list):
                continue
            parts.append(
                "".join(
                    str(child.get("text") or "")
                    for child in children
                    if isinstance(child, dict)
                )
            )
        return " ".join(parts)

    @staticmethod
    def _collapse(text: str) -> str:
        return _WHITESPACE_RE.sub(" ", text).strip()


# Global service instance
_normalizer: Optional[ContentNormalizer] = None


def get_normalizer() -> ContentNormalizer:
    """Get the global normalizer instance."""
    global _normalizer
    if _normalizer is None:
        _normalizer = ContentNormalizer()
    return _normalizer
