"""Prompt Builder Service for the RAG system prompt.

This module assembles the system turn sent ahead of the visitor's
conversation from the persona, the blog catalog and the retrieved chunks.
"""

from typing import List, Optional, Sequence

from blog_assistant.config import get_settings
from blog_assistant.models.chunk import RetrievedChunk
from blog_assistant.models.document import BlogDocument
from blog_assistant.models.persona import PersonaProfile
from blog_assistant.utils.logging import get_logger

logger = get_logger("prompt_builder")

NO_MATCHES_SENTENCE = "No specific blog content found for this query."


class PromptBuilder:
    """Service for building the system prompt of a chat request.

    The prompt structure is fixed:
    1. Persona / background
    2. Full blog catalog (optional)
    3. Retrieved blog content, or the no-match sentence
    4. Profile links
    5. Guidelines and response style

    Output depends only on the inputs, so identical requests produce
    identical prompts.
    """

    def __init__(
        self,
        blog_base_url: Optional[str] = None,
        blog_path_prefix: Optional[str] = None,
    ):
        settings = get_settings()
        base = blog_base_url if blog_base_url is not None else settings.prompt.blog_base_url
        prefix = (
            blog_path_prefix if blog_path_prefix is not None else settings.prompt.blog_path_prefix
        )
        self._base_url = base.rstrip("/")
        self._path_prefix = "/" + prefix.strip("/") if prefix.strip("/") else ""

    def blog_link(self, slug: str) -> str:
        """Canonical link of a blog post."""
        return f"{self._base_url}{self._path_prefix}/{slug}"

    def build_system_prompt(
        self,
        persona: PersonaProfile,
        retrieved: Sequence[RetrievedChunk],
        catalog: Optional[Sequence[BlogDocument]] = None,
        match_threshold: float = 0.0,
    ) -> str:
        """
        Build the complete system prompt.

        Args:
            persona: Author persona, links and behavioural guidelines
            retrieved: Search hits, best first
            catalog: Every blog post (title, categories, summary, date); omitted when None/empty
            match_threshold: Hits below this similarity are left out

        Returns:
            str: System prompt ready for the completion model
        """
        relevant = [chunk for chunk in retrieved if chunk.similarity >= match_threshold]

        prompt_parts = [self._build_persona_section(persona)]

        if catalog:
            prompt_parts.append(self._build_catalog_section(catalog))

        prompt_parts.append(self._build_blog_content_section(relevant, persona.fallback_hint))

        links_section = self._build_links_section(persona)
        if links_section:
            prompt_parts.append(links_section)

        prompt_parts.append(self._build_guidelines_section(persona))

        full_prompt = "\n\n".join(prompt_parts)

        logger.debug(
            f"Built system prompt: {len(full_prompt)} chars, "
            f"catalog={len(catalog) if catalog else 0}, "
            f"matches={len(relevant)}/{len(retrieved)}"
        )
        return full_prompt

    @staticmethod
    def _build_persona_section(persona: PersonaProfile) -> str:
        lines = [persona.assistant_intro.strip()]
        if persona.background:
            lines.append("")
            lines.append(f"**General Knowledge about {persona.author_name} & The Blog:**")
            lines.extend(f"- {item}" for item in persona.background)
        return "\n".join(lines)

    def _build_catalog_section(self, catalog: Sequence[BlogDocument]) -> str:
        entries = [
            self._format_catalog_entry(idx, document)
            for idx, document in enumerate((d for d in catalog if d.slug), start=1)
        ]
        header = f"**COMPLETE BLOG CATALOG ({len(entries)} posts with summaries):**"
        return header + "\n" + "\n\n".join(entries)

    def _format_catalog_entry(self, position: int, document: BlogDocument) -> str:
        entry = f"{position}. **{document.title}**"
        if document.categories:
            entry += f" [{', '.join(document.categories)}]"
        if document.short_description:
            entry += f"\n  Summary: {document.short_description}"
        if document.published_at:
            published = document.published_at
            entry += f"\n  Published: {published:%b} {published.day}, {published.year}"
        entry += f"\n  Link: {self.blog_link(document.slug or '')}"
        return entry

    def _build_blog_content_section(
        self, retrieved: Sequence[RetrievedChunk], fallback_hint: Optional[str]
    ) -> str:
        header = "**BLOG CONTENT (Specific detailed matches for current query):**"
        if not retrieved:
            fallback = NO_MATCHES_SENTENCE
            if fallback_hint:
                fallback += f" {fallback_hint}"
            return f"{header}\n{fallback}"

        entries: List[str] = []
        for idx, chunk in enumerate(retrieved, start=1):
            entries.append(
                f"**Blog Post {idx}: {chunk.blog_title}**\n"
                f"{chunk.content_chunk}\n\n"
                f"📖 Read more: [{chunk.blog_title}]({self.blog_link(chunk.blog_slug)})"
            )
        return header + "\n" + "\n\n---\n\n".join(entries)

    @staticmethod
    def _build_links_section(persona: PersonaProfile) -> str:
        parts: List[str] = []
        if persona.links:
            lines = ["**SOCIAL MEDIA & PROFILES:**"]
            for link in persona.links:
                line = f"- {link.title}: {link.url}"
                if link.description:
                    line += f" ({link.description})"
                lines.append(line)
            parts.append("\n".join(lines))
        if persona.about:
            parts.append(f"**About {persona.author_name}:**\n{persona.about.strip()}")
        return "\n\n".join(parts)

    @staticmethod
    def _build_guidelines_section(persona: PersonaProfile) -> str:
        lines = ["**Guidelines:**"]
        lines.extend(f"{idx}. {rule}" for idx, rule in enumerate(persona.guidelines, start=1))
        if persona.response_style:
            lines.append("")
            lines.append("**Response Style:**")
            lines.extend(f"- {rule}" for rule in persona.response_style)
        return "\n".join(lines)
