"""Persona loading for the chat system prompt.

Persona sources (in priority order):
1) JSON document at PROMPT_PERSONA_FILE, re-read when its mtime changes
2) Built-in generic persona
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

from blog_assistant.config import get_settings
from blog_assistant.models.persona import PersonaProfile
from blog_assistant.utils.logging import get_logger

logger = get_logger("persona_service")


DEFAULT_PERSONA = PersonaProfile(
    author_name="the author",
    assistant_intro=(
        "You are the personal blog assistant. You help visitors find and understand "
        "posts on this blog and learn about its author."
    ),
    background=[
        "The blog collects the author's writing across the topics listed in the catalog.",
    ],
    guidelines=[
        "Use the complete blog catalog to answer questions about which posts exist.",
        "Use the blog content matches to answer specific questions in detail.",
        'If someone asks "what posts do you have about X?", search the catalog by '
        "categories and summaries, then list the matching posts.",
        "If asked to summarize a post, use its catalog summary and invite the reader "
        "to read the full post.",
        "Always link to full blog posts using markdown: [Post Title](link).",
        "If someone asks how to contact the author, mention the profile links above.",
        "Be helpful, friendly, and conversational.",
    ],
    response_style=[
        "Keep answers concise (2-4 sentences) unless more detail is needed",
        "Use markdown formatting for readability",
        "Include relevant links to blog posts with context",
        "When listing multiple posts, format them as a numbered list with summaries",
    ],
    fallback_hint="Answer from the catalog and your general knowledge about the author.",
)


class PersonaService:
    """Serve the persona, caching the file until it changes on disk."""

    def __init__(self, persona_file: Optional[str] = None) -> None:
        if persona_file is None:
            persona_file = get_settings().prompt.persona_file
        self.persona_file = persona_file
        self._cached: Optional[PersonaProfile] = None
        self._cached_mtime: Optional[float] = None

    def get_persona(self) -> PersonaProfile:
        """Return the configured persona, or the built-in one."""
        if not self.persona_file:
            return DEFAULT_PERSONA

        try:
            mtime = os.stat(self.persona_file).st_mtime
        except OSError as e:
            logger.warning(f"Persona file unavailable ({self.persona_file}): {e}")
            return self._cached or DEFAULT_PERSONA

        if self._cached is not None and self._cached_mtime == mtime:
            return self._cached

        try:
            raw = json.loads(Path(self.persona_file).read_text(encoding="utf-8"))
            persona = PersonaProfile.model_validate(raw)
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load persona file {self.persona_file}: {e}")
            return self._cached or DEFAULT_PERSONA

        self._cached = persona
        self._cached_mtime = mtime
        logger.info(f"Loaded persona from {self.persona_file}")
        return persona

    def invalidate(self) -> None:
        """Drop the cached persona so the next call re-reads the file."""
        self._cached = None
        self._cached_mtime = None


# Global service instance
_persona_service: Optional[PersonaService] = None


def get_persona_service() -> PersonaService:
    """Get the global persona service instance."""
    global _persona_service
    if _persona_service is None:
        _persona_service = PersonaService()
    return _persona_service
