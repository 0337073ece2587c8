"""Tagging pipeline: extract, canonicalize and store tags for newsletters.

Full run (run):
1. Load newsletters (all, a limited slice, specific IDs, or only untagged)
2. Extract raw tags per newsletter with bounded concurrency
3. Canonicalize the full raw tag set in one Claude call
4. Replace each successfully extracted newsletter's tags with its canonical tags

Recovery run (retry_untagged):
- Only newsletters that have no tags yet
- Strictly sequential with a conservative delay
- Each newsletter is committed as soon as it succeeds
- No canonicalization; raw tags are stored as-is

Network calls happen inside the batch executor; all database work happens
outside its concurrent windows because an AsyncSession must not be shared by
concurrent coroutines.
"""

import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tagger.core.config import Settings, get_settings
from tagger.core.logging import get_logger, tagging_logger
from tagger.integrations.claude import ClaudeClient
from tagger.models.newsletter import Newsletter
from tagger.repositories.newsletter import NewsletterRepository
from tagger.repositories.tag import TagRepository, normalize_tag_name
from tagger.schemas.tag import TagStats, TagWithCount
from tagger.services.tag_canonicalization import TagCanonicalizationService
from tagger.services.tag_extraction import TagExtractionService
from tagger.utils.batch import process_sequential

logger = get_logger(__name__)


class TaggingConfigurationError(Exception):
    """Raised when the pipeline cannot run because Claude is not configured."""

    pass


def resolve_canonical(raw_tag: str, mapping: dict[str, str]) -> str:
    """Return the canonical form of raw_tag, or raw_tag itself.

    The raw tag is kept when it is missing from the mapping or when its
    canonical form has no usable characters (e.g. "***").
    """
    canonical = mapping.get(raw_tag, raw_tag)
    if not normalize_tag_name(canonical):
        return raw_tag
    return canonical


def apply_canonical_mapping(raw_tags: Iterable[str], mapping: dict[str, str]) -> list[str]:
    """Map raw tags to canonical tags for one newsletter.

    Each raw tag is resolved with resolve_canonical. Canonical tags that
    normalize to the same key are kept once (first occurrence wins) and tags
    that still normalize to an empty key are dropped.

    Example:
        >>> apply_canonical_mapping(["AI", "ML", "ai"], {"AI": "Artificial Intelligence",
        ...     "ai": "artificial intelligence", "ML": "Machine Learning"})
        ['Artificial Intelligence', 'Machine Learning']
    """
    seen: set[str] = set()
    canonical_tags: list[str] = []
    for raw_tag in raw_tags:
        canonical = resolve_canonical(raw_tag, mapping)
        normalized = normalize_tag_name(canonical)
        if not normalized or normalized in seen:
            continue
        seen.add(normalized)
        canonical_tags.append(canonical)
    return canonical_tags


@dataclass
class TaggingSummary:
    """Report of one pipeline run."""

    total: int = 0
    processed: int = 0
    failed: int = 0
    failed_newsletter_ids: list[str] = field(default_factory=list)
    unique_raw_tags: int = 0
    canonical_tags: int = 0
    degraded: bool = False
    tags_assigned: int = 0
    stats: TagStats = field(default_factory=TagStats)
    top_tags: list[TagWithCount] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def avg_tags_per_newsletter(self) -> float:
        return self.tags_assigned / self.processed if self.processed else 0.0

    def log(self) -> None:
        """Write the run report at INFO level."""
        logger.info(
            "Tag extraction complete",
            extra={
                "total": self.total,
                "processed": self.processed,
                "failed": self.failed,
                "failed_newsletter_ids": self.failed_newsletter_ids,
                "unique_raw_tags": self.unique_raw_tags,
                "canonical_tags": self.canonical_tags,
                "degraded": self.degraded,
                "avg_tags_per_newsletter": round(self.avg_tags_per_newsletter, 2),
                "total_tags": self.stats.total_tags,
                "total_newsletter_tags": self.stats.total_newsletter_tags,
                "max_tags_per_newsletter": self.stats.max_tags_per_newsletter,
                "duration_ms": round(self.duration_ms, 2),
            },
        )
        for rank, tag in enumerate(self.top_tags, start=1):
            logger.info(f"  {rank}. {tag.name} ({tag.newsletter_count} newsletters)")


class TaggingPipeline:
    """Coordinates extraction, canonicalization and persistence of tags."""

    def __init__(
        self,
        claude_client: ClaudeClient,
        session: AsyncSession,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the tagging pipeline.

        Args:
            claude_client: ClaudeClient for LLM operations.
            session: AsyncSession; run() only flushes, the caller commits.
            settings: Tagging settings. Defaults to get_settings().
        """
        self._claude = claude_client
        self._session = session
        self._settings = settings or get_settings()
        self._extraction = TagExtractionService(claude_client, self._settings)
        self._canonicalization = TagCanonicalizationService(claude_client, self._settings)
        self._newsletters = NewsletterRepository(session)
        self._tags = TagRepository(session)

    def _check_configured(self) -> None:
        if not self._claude.available:
            raise TaggingConfigurationError(
                "Claude is not configured (set ANTHROPIC_API_KEY)"
            )

    async def _load_newsletters(
        self,
        newsletter_ids: Sequence[str] | None,
        limit: int | None,
        only_untagged: bool,
    ) -> list[Newsletter]:
        if newsletter_ids:
            return await self._newsletters.get_by_ids(newsletter_ids)
        if only_untagged:
            return await self._newsletters.get_untagged(limit)
        return await self._newsletters.get_all(limit)

    async def _store_tags(
        self, newsletter_id: str, raw_tags: list[str], mapping: dict[str, str]
    ) -> list[str]:
        for raw_tag in raw_tags:
            canonical = resolve_canonical(raw_tag, mapping)
            if not normalize_tag_name(canonical):
                tagging_logger.tag_skipped(newsletter_id, canonical)

        canonical_tags = apply_canonical_mapping(raw_tags, mapping)
        await self._tags.set_newsletter_tags(newsletter_id, canonical_tags)
        tagging_logger.tags_persisted(newsletter_id, canonical_tags)
        return canonical_tags

    async def _finish_summary(self, summary: TaggingSummary, start_time: float) -> TaggingSummary:
        await self._session.flush()
        summary.stats = await self._tags.get_tag_stats()
        top_n = self._settings.tagging_top_tags_in_summary
        summary.top_tags = (await self._tags.get_all_tags_with_counts())[:top_n]
        summary.duration_ms = (time.monotonic() - start_time) * 1000
        return summary

    async def run(
        self,
        newsletter_ids: Sequence[str] | None = None,
        limit: int | None = None,
        only_untagged: bool = False,
    ) -> TaggingSummary:
        """Run the full extract -> canonicalize -> store pipeline.

        Args:
            newsletter_ids: Tag only these newsletters
            limit: Maximum number of newsletters (ignored with newsletter_ids)
            only_untagged: Only newsletters that have no tags yet

        Returns:
            TaggingSummary for the run

        Raises:
            TaggingConfigurationError: If Claude is not configured. Checked
                before any database read or Claude call.
        """
        self._check_configured()
        start_time = time.monotonic()

        newsletters = await self._load_newsletters(newsletter_ids, limit, only_untagged)
        summary = TaggingSummary(total=len(newsletters))
        if not newsletters:
            logger.warning("No newsletters to tag")
            return await self._finish_summary(summary, start_time)

        extraction = await self._extraction.extract_all(newsletters)
        canonicalization = await self._canonicalization.canonicalize(extraction.all_raw_tags)

        for success in extraction.batch.successful:
            stored = await self._store_tags(
                success.item.id, success.result, canonicalization.mapping
            )
            summary.tags_assigned += len(stored)

        summary.processed = len(extraction.batch.successful)
        summary.failed = len(extraction.batch.failed)
        summary.failed_newsletter_ids = extraction.failed_newsletter_ids
        summary.unique_raw_tags = len(extraction.all_raw_tags)
        summary.canonical_tags = len(canonicalization.canonical_tags)
        summary.degraded = canonicalization.degraded
        return await self._finish_summary(summary, start_time)

    async def retry_untagged(
        self,
        limit: int | None = None,
        delay_seconds: float | None = None,
    ) -> TaggingSummary:
        """Tag newsletters that still have no tags, one at a time.

        Each newsletter is committed as soon as its tags are stored, so an
        interrupted run keeps its progress. Raw tags are stored without
        canonicalization.

        Args:
            limit: Maximum number of newsletters
            delay_seconds: Pause between newsletters. Defaults to
                tagging_retry_delay_seconds.

        Raises:
            TaggingConfigurationError: If Claude is not configured
        """
        self._check_configured()
        start_time = time.monotonic()
        if delay_seconds is None:
            delay_seconds = self._settings.tagging_retry_delay_seconds

        newsletters = await self._newsletters.get_untagged(limit)
        summary = TaggingSummary(total=len(newsletters))
        if not newsletters:
            logger.info("No untagged newsletters remain")
            return await self._finish_summary(summary, start_time)

        # Detached so a per-item rollback cannot expire their loaded attributes
        self._session.expunge_all()
        tagging_logger.extraction_start(len(newsletters), 1, delay_seconds)

        async def tag_one(newsletter: Newsletter, _index: int) -> list[str]:
            raw_tags = await self._extraction.extract_tags(newsletter)
            try:
                stored = await self._store_tags(newsletter.id, raw_tags, {})
                await self._session.commit()
            except SQLAlchemyError:
                await self._session.rollback()
                raise
            return stored

        def on_progress(completed: int, total: int, _newsletter: Newsletter) -> None:
            tagging_logger.extraction_progress(completed, total)

        def on_error(error: Exception, newsletter: Newsletter, _index: int) -> None:
            tagging_logger.extraction_failure(newsletter.id, error)

        batch = await process_sequential(
            newsletters,
            tag_one,
            delay_seconds=delay_seconds,
            on_progress=on_progress,
            on_error=on_error,
        )

        summary.processed = len(batch.successful)
        summary.failed = len(batch.failed)
        summary.failed_newsletter_ids = [failure.item.id for failure in batch.failed]
        summary.tags_assigned = sum(len(success.result) for success in batch.successful)
        summary.unique_raw_tags = len(
            {tag for success in batch.successful for tag in success.result}
        )
        summary.canonical_tags = summary.unique_raw_tags
        tagging_logger.extraction_complete(
            processed=summary.processed,
            failed=summary.failed,
            unique_raw_tags=summary.unique_raw_tags,
            duration_ms=batch.duration_ms,
        )
        return await self._finish_summary(summary, start_time)
