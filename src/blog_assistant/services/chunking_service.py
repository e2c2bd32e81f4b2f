"""Sentence-packing text chunker for blog embeddings."""

import re
from typing import List, Optional

from blog_assistant.config import get_settings
from blog_assistant.models.chunk import TextChunk
from blog_assistant.utils.logging import get_logger

logger = get_logger("chunking_service")

# A sentence is a run of text closed by terminal punctuation; a trailing
# fragment without punctuation counts as the last sentence.
_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


class ChunkingService:
    """
    Split plain text into chunks of at most `max_length` characters.

    Sentences are packed greedily in order. A sentence longer than the limit
    is never split and becomes its own oversized chunk. Chunks whose trimmed
    length is at or below `min_length` carry too little signal to embed and
    are dropped.
    """

    def __init__(self, max_length: Optional[int] = None, min_length: Optional[int] = None):
        settings = get_settings()
        self.max_length = max_length if max_length is not None else settings.chunking.max_length
        self.min_length = min_length if min_length is not None else settings.chunking.min_length

    def chunk_text(self, text: Optional[str], max_length: Optional[int] = None) -> List[TextChunk]:
        """Chunk `text`; empty or absent input yields an empty list."""
        if not text or not text.strip():
            return []

        limit = max_length if max_length is not None else self.max_length
        packed = self._pack_sentences(self._split_sentences(text), limit)

        chunks: List[TextChunk] = []
        for candidate in packed:
            if len(candidate) <= self.min_length:
                continue
            chunks.append(TextChunk(chunk_index=len(chunks), text=candidate))

        logger.debug(
            f"Chunked text: chars={len(text)}, candidates={len(packed)}, kept={len(chunks)}",
            extra={"max_length": limit, "min_length": self.min_length},
        )
        return chunks

    @staticmethod
    def _split_sentences(text: str) -> List[str]:
        parts = [m.group(0).strip() for m in _SENTENCE_RE.finditer(text)]
        parts = [p for p in parts if p]
        return parts if parts else [text.strip()]

    @staticmethod
    def _pack_sentences(sentences: List[str], max_length: int) -> List[str]:
        packed: List[str] = []
        current = ""
        for sentence in sentences:
            candidate = f"{current} {sentence}" if current else sentence
            if current and len(candidate) > max_length:
                packed.append(current)
                current = sentence
            else:
                current = candidate
        if current:
            packed.append(current)
        return [p.strip() for p in packed]


# Global service instance
_chunking_service: Optional[ChunkingService] = None


def get_chunking_service() -> ChunkingService:
    """Get the global chunking service instance."""
    global _chunking_service
    if _chunking_service is None:
        _chunking_service = ChunkingService()
    return _chunking_service
