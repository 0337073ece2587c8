"""TagRepository with idempotent tag and association operations.

Handles all database operations for Tag and NewsletterTag entities.
Follows the layered architecture pattern: Service -> Repository -> Database.

Idempotency rules:
- get_or_create resolves by normalized name; the first writer's display name wins
- Association inserts ignore duplicate (newsletter_id, tag_id) pairs
- Both use a single INSERT ... ON CONFLICT DO NOTHING followed by a lookup, so two
  writers racing on the same tag both end up with the winner's row

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with parameters
- Log all database exceptions with table and context, then re-raise
- Log merges at INFO level
- Add timing logs for operations >1 second
"""

import re
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tagger.core.logging import db_logger, get_logger
from tagger.models.newsletter import Newsletter
from tagger.models.tag import MAX_TAG_LENGTH, NewsletterTag, Tag
from tagger.schemas.tag import TagStats, TagWithCount

logger = get_logger(__name__)

_INSERT_BY_DIALECT: dict[str, Any] = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def normalize_tag_name(tag_name: str) -> str:
    """Normalize a tag name for consistent storage and matching.

    - Converts to lowercase and trims surrounding whitespace
    - Replaces each run of whitespace with a single hyphen
    - Removes every character outside [a-z0-9_-]
    - Collapses repeated hyphens and trims leading/trailing hyphens

    Examples:
        >>> normalize_tag_name("Machine Learning")
        'machine-learning'
        >>> normalize_tag_name("  C++ / Rust  ")
        'c-rust'
    """
    normalized = tag_name.lower().strip()
    normalized = re.sub(r"\s+", "-", normalized)
    normalized = re.sub(r"[^a-z0-9\-_]", "", normalized)
    normalized = re.sub(r"-+", "-", normalized)
    return normalized.strip("-")


class TagRepositoryError(Exception):
    """Base exception for tag repository errors."""

    pass


class InvalidTagNameError(TagRepositoryError):
    """Raised when a tag name normalizes to an empty string."""

    def __init__(self, tag_name: str) -> None:
        super().__init__(f"Tag name {tag_name!r} has no usable characters")
        self.tag_name = tag_name


class TagNotFoundError(TagRepositoryError):
    """Raised when a tag id does not reference a live tag."""

    def __init__(self, tag_id: int) -> None:
        super().__init__(f"Tag with id {tag_id} not found")
        self.tag_id = tag_id


class TagMergeError(TagRepositoryError):
    """Raised when a merge request is invalid."""

    pass


@dataclass
class TagMergeResult:
    """Outcome of merging one tag into another."""

    source_tag_id: int
    target_tag_id: int
    moved_associations: int
    dropped_associations: int


class TagRepository:
    """Repository for canonical tags and newsletter/tag associations.

    All methods share one AsyncSession; the caller owns the transaction.
    """

    TABLE_NAME = "tags"
    ASSOCIATION_TABLE_NAME = "newsletter_tags"
    SLOW_OPERATION_THRESHOLD_MS = 1000  # 1 second

    normalize_tag_name = staticmethod(normalize_tag_name)

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session for database operations
        """
        self.session = session

    def _insert(self, model: type) -> Any:
        """Build a dialect-specific INSERT that supports ON CONFLICT."""
        dialect = self.session.get_bind().dialect.name
        insert_fn = _INSERT_BY_DIALECT.get(dialect)
        if insert_fn is None:
            raise TagRepositoryError(f"Unsupported database dialect: {dialect}")
        return insert_fn(model)

    def _check_slow(self, query: str, start_time: float, table: str) -> None:
        duration_ms = (time.monotonic() - start_time) * 1000
        if duration_ms > self.SLOW_OPERATION_THRESHOLD_MS:
            db_logger.slow_query(query=query, duration_ms=duration_ms, table=table)

    async def get_or_create(self, tag_name: str) -> Tag:
        """Get or create a tag by name.

        If a tag with the same normalized name exists it is returned unchanged,
        even when its display name differs from tag_name.

        Args:
            tag_name: Display name of the tag

        Names longer than MAX_TAG_LENGTH are cut to fit the column before
        normalizing.

        Returns:
            The existing or newly created Tag

        Raises:
            InvalidTagNameError: If tag_name normalizes to an empty string
            SQLAlchemyError: On database errors
        """
        start_time = time.monotonic()
        name = tag_name.strip()[:MAX_TAG_LENGTH].rstrip()
        normalized = normalize_tag_name(name)
        if not normalized:
            raise InvalidTagNameError(tag_name)

        try:
            stmt = (
                self._insert(Tag)
                .values(
                    name=name,
                    normalized_name=normalized,
                    created_at=datetime.now(UTC),
                )
                .on_conflict_do_nothing(index_elements=["normalized_name"])
            )
            await self.session.execute(stmt)

            result = await self.session.execute(
                select(Tag).where(Tag.normalized_name == normalized)
            )
            tag = result.scalar_one()

            self._check_slow(
                f"UPSERT tags normalized_name={normalized}", start_time, self.TABLE_NAME
            )
            return tag

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.TABLE_NAME,
                context=f"Get-or-create tag normalized_name={normalized}",
            )
            raise

    async def add_tag_to_newsletter(self, newsletter_id: str, tag_name: str) -> Tag:
        """Associate a tag with a newsletter, creating the tag if needed.

        Adding a tag the newsletter already carries is a no-op.

        Args:
            newsletter_id: The newsletter ID
            tag_name: The tag display name

        Returns:
            The resolved Tag
        """
        tag = await self.get_or_create(tag_name)

        try:
            stmt = (
                self._insert(NewsletterTag)
                .values(newsletter_id=newsletter_id, tag_id=tag.id)
                .on_conflict_do_nothing(index_elements=["newsletter_id", "tag_id"])
            )
            await self.session.execute(stmt)
        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.ASSOCIATION_TABLE_NAME,
                context=f"Adding tag_id={tag.id} to newsletter_id={newsletter_id}",
            )
            raise

        return tag

    async def add_tags_to_newsletter(
        self, newsletter_id: str, tag_names: list[str]
    ) -> list[Tag]:
        """Associate several tags with a newsletter."""
        tags = [await self.add_tag_to_newsletter(newsletter_id, name) for name in tag_names]
        logger.debug(
            f"Added {len(tag_names)} tags to newsletter {newsletter_id}",
            extra={"newsletter_id": newsletter_id, "tags": tag_names},
        )
        return tags

    async def clear_newsletter_tags(self, newsletter_id: str) -> int:
        """Remove every tag from a newsletter.

        Returns:
            Number of associations removed
        """
        result = await self.session.execute(
            delete(NewsletterTag)
            .where(NewsletterTag.newsletter_id == newsletter_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def set_newsletter_tags(
        self, newsletter_id: str, tag_names: list[str]
    ) -> list[Tag]:
        """Replace all tags for a newsletter.

        Clears existing associations and adds the given tags, so a re-run never
        leaves stale tags behind.
        """
        await self.clear_newsletter_tags(newsletter_id)
        return await self.add_tags_to_newsletter(newsletter_id, tag_names)

    async def get_newsletter_tags(self, newsletter_id: str) -> list[Tag]:
        """Get all tags for a newsletter, ordered by name."""
        result = await self.session.execute(
            select(Tag)
            .join(NewsletterTag, NewsletterTag.tag_id == Tag.id)
            .where(NewsletterTag.newsletter_id == newsletter_id)
            .order_by(Tag.name)
        )
        return list(result.scalars().all())

    async def get_newsletters_by_tag(self, tag_name: str) -> list[Newsletter]:
        """Get all newsletters carrying a tag, newest first.

        Args:
            tag_name: Tag name in any spelling that normalizes to the tag
        """
        normalized = normalize_tag_name(tag_name)
        result = await self.session.execute(
            select(Newsletter)
            .join(NewsletterTag, NewsletterTag.newsletter_id == Newsletter.id)
            .join(Tag, Tag.id == NewsletterTag.tag_id)
            .where(Tag.normalized_name == normalized)
            .order_by(Newsletter.publish_date.desc().nulls_last(), Newsletter.id)
        )
        return list(result.scalars().all())

    async def get_all_tags_with_counts(self) -> list[TagWithCount]:
        """Get all tags with their newsletter counts, most used first."""
        start_time = time.monotonic()
        newsletter_count = func.count(NewsletterTag.newsletter_id).label(
            "newsletter_count"
        )
        result = await self.session.execute(
            select(Tag, newsletter_count)
            .outerjoin(NewsletterTag, NewsletterTag.tag_id == Tag.id)
            .group_by(Tag.id)
            .order_by(newsletter_count.desc(), Tag.name)
        )
        tags = [
            TagWithCount(
                id=tag.id,
                name=tag.name,
                normalized_name=tag.normalized_name,
                created_at=tag.created_at,
                newsletter_count=count,
            )
            for tag, count in result.all()
        ]
        self._check_slow("SELECT tags with counts", start_time, self.TABLE_NAME)
        return tags

    async def get_all_tags(self) -> list[Tag]:
        """Get all tags ordered by name."""
        result = await self.session.execute(select(Tag).order_by(Tag.name))
        return list(result.scalars().all())

    async def get_by_id(self, tag_id: int) -> Tag | None:
        """Get a tag by ID."""
        result = await self.session.execute(select(Tag).where(Tag.id == tag_id))
        return result.scalar_one_or_none()

    async def search_tags(self, pattern: str) -> list[Tag]:
        """Get tags whose name or normalized name matches a LIKE pattern.

        Matching is case-insensitive on every backend.

        Example:
            await repo.search_tags("%machine%")
        """
        result = await self.session.execute(
            select(Tag)
            .where(or_(Tag.name.ilike(pattern), Tag.normalized_name.ilike(pattern)))
            .order_by(Tag.name)
        )
        return list(result.scalars().all())

    async def get_tag_stats(self) -> TagStats:
        """Get aggregate tag statistics."""
        total_tags = await self.session.scalar(select(func.count()).select_from(Tag))
        total_newsletter_tags = await self.session.scalar(
            select(func.count()).select_from(NewsletterTag)
        )

        per_newsletter = (
            select(func.count().label("tag_count"))
            .select_from(NewsletterTag)
            .group_by(NewsletterTag.newsletter_id)
            .subquery()
        )
        avg_tags, max_tags = (
            await self.session.execute(
                select(
                    func.avg(per_newsletter.c.tag_count),
                    func.max(per_newsletter.c.tag_count),
                )
            )
        ).one()

        return TagStats(
            total_tags=total_tags or 0,
            total_newsletter_tags=total_newsletter_tags or 0,
            avg_tags_per_newsletter=float(avg_tags or 0),
            max_tags_per_newsletter=int(max_tags or 0),
        )

    async def delete_tag(self, tag_id: int) -> bool:
        """Delete a tag and all of its newsletter associations.

        Returns:
            True if a tag was deleted
        """
        await self.session.execute(
            delete(NewsletterTag)
            .where(NewsletterTag.tag_id == tag_id)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(delete(Tag).where(Tag.id == tag_id))
        deleted = bool(result.rowcount)
        logger.debug(f"Deleted tag {tag_id}", extra={"tag_id": tag_id, "deleted": deleted})
        return deleted

    async def merge_tags(self, source_tag_id: int, target_tag_id: int) -> TagMergeResult:
        """Merge source tag into target tag, then delete the source.

        Associations on the source move to the target unless the newsletter
        already carries the target, in which case they are dropped.

        Args:
            source_tag_id: The tag to merge from (will be deleted)
            target_tag_id: The tag to merge into (kept)

        Returns:
            TagMergeResult with moved and dropped association counts

        Raises:
            TagMergeError: If source and target are the same tag
            TagNotFoundError: If either tag does not exist (including a source
                already removed by an earlier merge)
        """
        if source_tag_id == target_tag_id:
            raise TagMergeError(f"Cannot merge tag {source_tag_id} into itself")

        for tag_id in (source_tag_id, target_tag_id):
            if await self.get_by_id(tag_id) is None:
                raise TagNotFoundError(tag_id)

        try:
            already_on_target = select(NewsletterTag.newsletter_id).where(
                NewsletterTag.tag_id == target_tag_id
            )
            moved = await self.session.execute(
                update(NewsletterTag)
                .where(
                    NewsletterTag.tag_id == source_tag_id,
                    NewsletterTag.newsletter_id.not_in(already_on_target),
                )
                .values(tag_id=target_tag_id)
                .execution_options(synchronize_session=False)
            )
            dropped = await self.session.execute(
                delete(NewsletterTag)
                .where(NewsletterTag.tag_id == source_tag_id)
                .execution_options(synchronize_session=False)
            )
            await self.session.execute(delete(Tag).where(Tag.id == source_tag_id))

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.ASSOCIATION_TABLE_NAME,
                context=f"Merging tag {source_tag_id} into {target_tag_id}",
            )
            raise

        merge_result = TagMergeResult(
            source_tag_id=source_tag_id,
            target_tag_id=target_tag_id,
            moved_associations=moved.rowcount or 0,
            dropped_associations=dropped.rowcount or 0,
        )
        logger.info(
            f"Merged tag {source_tag_id} into {target_tag_id} and deleted source",
            extra={
                "source_tag_id": source_tag_id,
                "target_tag_id": target_tag_id,
                "moved_associations": merge_result.moved_associations,
                "dropped_associations": merge_result.dropped_associations,
            },
        )
        return merge_result
