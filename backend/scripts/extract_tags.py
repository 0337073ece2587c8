#!/usr/bin/env python3
"""Extract, canonicalize and store topic tags for archived newsletters.

Usage:
    1. Set ANTHROPIC_API_KEY (and optionally DATABASE_URL) in backend/.env
    2. Run: cd backend && python scripts/extract_tags.py [options]

Examples:
    python scripts/extract_tags.py                       # tag every newsletter
    python scripts/extract_tags.py --limit 10            # newest 10 only
    python scripts/extract_tags.py --newsletter-id abc   # re-tag one newsletter
    python scripts/extract_tags.py --untagged            # full run over untagged only
    python scripts/extract_tags.py --retry-untagged      # slow sequential final pass
    python scripts/extract_tags.py --merge 12 7          # fold tag 12 into tag 7
    python scripts/extract_tags.py --stats               # print tag statistics
"""

import argparse
import asyncio
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession

# Add backend to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

# Load environment variables from .env
from dotenv import load_dotenv

load_dotenv(backend_dir / ".env")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--newsletter-id", action="append", dest="newsletter_ids",
                      help="Tag only this newsletter (repeatable)")
    mode.add_argument("--untagged", action="store_true",
                      help="Full run over newsletters that have no tags")
    mode.add_argument("--retry-untagged", action="store_true",
                      help="Sequential final pass over untagged newsletters")
    mode.add_argument("--merge", nargs=2, type=int, metavar=("SOURCE", "TARGET"),
                      help="Merge tag SOURCE into tag TARGET and delete SOURCE")
    mode.add_argument("--stats", action="store_true", help="Print tag statistics")
    parser.add_argument("--limit", type=int, help="Maximum number of newsletters")
    return parser.parse_args(argv)


async def show_stats(session: AsyncSession, top_n: int) -> None:
    from tagger.repositories.tag import TagRepository

    repo = TagRepository(session)
    stats = await repo.get_tag_stats()
    print(f"Total tags:               {stats.total_tags}")
    print(f"Total tag associations:   {stats.total_newsletter_tags}")
    print(f"Average tags/newsletter:  {stats.avg_tags_per_newsletter:.2f}")
    print(f"Max tags on a newsletter: {stats.max_tags_per_newsletter}")
    print(f"\nTop {top_n} tags:")
    for rank, tag in enumerate((await repo.get_all_tags_with_counts())[:top_n], start=1):
        print(f"  {rank}. {tag.name} ({tag.newsletter_count} newsletters)")


async def main(argv: list[str] | None = None) -> int:
    """Run the requested tagging mode. Returns the process exit code."""
    # Import after dotenv load
    from tagger.core.config import get_settings
    from tagger.core.database import db_manager, session_scope
    from tagger.core.logging import get_logger, setup_logging
    from tagger.integrations.claude import ClaudeClient
    from tagger.repositories.tag import TagRepository, TagRepositoryError
    from tagger.services.tagging import TaggingConfigurationError, TaggingPipeline

    args = parse_args(argv)
    setup_logging()
    logger = get_logger("extract_tags")

    db_manager.init_db()
    await db_manager.create_all()

    try:
        if args.stats:
            async with session_scope() as session:
                await show_stats(session, get_settings().tagging_top_tags_in_summary)
            return 0

        if args.merge:
            source_id, target_id = args.merge
            try:
                async with session_scope() as session:
                    result = await TagRepository(session).merge_tags(source_id, target_id)
            except TagRepositoryError as e:
                logger.error(f"Merge failed: {e}")
                return 1
            print(
                f"Merged tag {source_id} into {target_id}: "
                f"{result.moved_associations} moved, {result.dropped_associations} dropped"
            )
            return 0

        async with ClaudeClient() as claude:
            try:
                async with session_scope() as session:
                    pipeline = TaggingPipeline(claude, session)
                    if args.retry_untagged:
                        summary = await pipeline.retry_untagged(limit=args.limit)
                    else:
                        summary = await pipeline.run(
                            newsletter_ids=args.newsletter_ids,
                            limit=args.limit,
                            only_untagged=args.untagged,
                        )
            except TaggingConfigurationError as e:
                logger.error(str(e))
                return 1

        summary.log()
        return 0

    finally:
        await db_manager.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
