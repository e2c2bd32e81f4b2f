"""
Index blog posts from Sanity into the vector store.

This command:
1. Fetches every blog post (or the posts given with --slug) from Sanity
2. Converts each post's rich text to plain text and splits it into chunks
3. Embeds every chunk and writes one row per chunk to the vector store

Usage:
    blog-assistant-index
    blog-assistant-index --slug my-first-post --slug another-post
    blog-assistant-index --no-replace

Required environment:
    SANITY_PROJECT_ID (or NEXT_PUBLIC_SANITY_PROJECT_ID)
    SUPABASE_URL (or NEXT_PUBLIC_SUPABASE_URL) and SUPABASE_SERVICE_ROLE_KEY,
    or QDRANT_URL with VECTOR_STORE_BACKEND=qdrant
    HUGGINGFACE_TOKEN (optional), COHERE_API_KEY or OPENAI_API_KEY for those providers
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from blog_assistant.config import get_settings
from blog_assistant.services.indexing_service import IndexingService, IndexingStats
from blog_assistant.utils.errors import ConfigurationError, RemoteServiceError
from blog_assistant.utils.logging import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blog-assistant-index",
        description="Index blog posts into the vector store for the chat assistant.",
    )
    parser.add_argument(
        "--slug",
        dest="slugs",
        action="append",
        default=None,
        help="Only index the post with this slug (repeatable)",
    )
    parser.add_argument(
        "--no-replace",
        dest="replace_existing",
        action="store_false",
        default=None,
        help="Keep a post's existing rows instead of replacing them",
    )
    return parser


def print_summary(stats: IndexingStats) -> None:
    """Print the run summary."""
    print("\n" + "=" * 50)
    print("Indexing complete")
    print("=" * 50)
    print(f"  Blog posts found:     {stats.documents_found}")
    print(f"  Blog posts processed: {stats.documents_processed}")
    print(f"  Blog posts skipped:   {stats.documents_skipped}")
    print(f"  Chunks created:       {stats.chunks_created}")
    print(f"  ✓ Successes:          {stats.chunks_indexed}")
    print(f"  ✗ Errors:             {stats.errors}")
    if stats.errors:
        print("\n⚠️  Some chunks were not indexed; re-run to retry them.")


async def run_indexing(
    slugs: Optional[List[str]] = None,
    replace_existing: Optional[bool] = None,
    service: Optional[IndexingService] = None,
) -> int:
    """Run one indexing pass and return the process exit code."""
    settings = get_settings()
    try:
        settings.require_indexing_credentials()
    except ConfigurationError as e:
        print(f"✗ {e.message}")
        return 1

    service = service or IndexingService(settings)
    print(
        f"Indexing blog posts from Sanity project '{settings.sanity.project_id}' "
        f"(dataset: {settings.sanity.dataset}) into {settings.retrieval.backend.value}..."
    )
    try:
        stats = await service.run(slugs=slugs, replace_existing=replace_existing)
    except ConfigurationError as e:
        print(f"✗ {e.message}")
        return 1
    except RemoteServiceError as e:
        print(f"✗ Could not fetch blog posts: {e.message}")
        return 1
    except Exception as e:
        print(f"✗ Indexing failed: {type(e).__name__}: {e}")
        return 1
    finally:
        await service.aclose()

    print_summary(stats)
    return 0


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the `blog-assistant-index` command."""
    args = build_parser().parse_args(argv)
    setup_logging()
    sys.exit(asyncio.run(run_indexing(args.slugs, args.replace_existing)))


if __name__ == "__main__":
    main()
