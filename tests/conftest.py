"""Pytest configuration and fixtures for blog-assistant tests."""

import os

import pytest

# Set environment variables before any imports that might use them
os.environ["ENVIRONMENT"] = "development"
os.environ["DEBUG"] = "false"
os.environ.pop("PROMPT_PERSONA_FILE", None)

# Now we can safely import
from blog_assistant.config import (
    EmbeddingSettings,
    GroqSettings,
    IndexingSettings,
    SanitySettings,
    Settings,
    SupabaseSettings,
)


@pytest.fixture
def settings():
    """Fully configured settings (Supabase + HuggingFace + Groq)."""
    return Settings(
        sanity=SanitySettings(project_id="testproj", dataset="production"),
        embedding=EmbeddingSettings(provider="huggingface", huggingface_token="hf-test"),
        supabase=SupabaseSettings(
            url="https://db.example.supabase.co",
            anon_key="anon-key",
            service_role_key="service-key",
        ),
        groq=GroqSettings(api_key="gsk-test"),
        indexing=IndexingSettings(request_delay=1.0, rate_limit_delay=60.0),
    )


@pytest.fixture
def make_block():
    """Factory for Portable Text blocks holding a single span."""

    def _make(text, style="normal", marks=None):
        return {
            "_type": "block",
            "_key": f"k{abs(hash(text)) % 10000}",
            "style": style,
            "markDefs": [],
            "children": [
                {"_type": "span", "_key": "s1", "text": text, "marks": marks or []},
            ],
        }

    return _make
