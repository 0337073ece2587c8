"""NewsletterRepository for reading the newsletter archive.

The tagging pipeline only reads newsletters; create() exists for the sync job
and for seeding test data.

ERROR LOGGING REQUIREMENTS:
- Log method entry/exit at DEBUG level with parameters
- Log all database exceptions with table and context, then re-raise
- Add timing logs for operations >1 second
"""

import time
from collections.abc import Sequence
from datetime import datetime

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tagger.core.logging import db_logger, get_logger
from tagger.models.newsletter import Newsletter
from tagger.models.tag import NewsletterTag

logger = get_logger(__name__)

NEWEST_FIRST = (Newsletter.publish_date.desc().nulls_last(), Newsletter.id)


class NewsletterRepository:
    """Repository for Newsletter read operations.

    Listings are ordered newest first; newsletters without a publish date
    sort last.
    """

    TABLE_NAME = "newsletters"
    SLOW_OPERATION_THRESHOLD_MS = 1000  # 1 second

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async SQLAlchemy session for database operations
        """
        self.session = session

    async def create(
        self,
        newsletter_id: str,
        subject: str,
        body: str,
        normalized_markdown: str | None = None,
        publish_date: datetime | None = None,
    ) -> Newsletter:
        """Create a newsletter.

        Raises:
            IntegrityError: If a newsletter with the same ID exists
            SQLAlchemyError: On other database errors
        """
        try:
            newsletter = Newsletter(
                id=newsletter_id,
                subject=subject,
                body=body,
                normalized_markdown=normalized_markdown,
                publish_date=publish_date,
            )
            self.session.add(newsletter)
            await self.session.flush()
            return newsletter

        except IntegrityError as e:
            logger.error(
                "Failed to create newsletter - integrity error",
                extra={
                    "newsletter_id": newsletter_id,
                    "error_type": type(e).__name__,
                    "error_message": str(e),
                },
                exc_info=True,
            )
            raise

        except SQLAlchemyError as e:
            db_logger.transaction_failure(
                e,
                table=self.TABLE_NAME,
                context=f"Creating newsletter id={newsletter_id}",
            )
            raise

    async def get_by_id(self, newsletter_id: str) -> Newsletter | None:
        """Get a newsletter by ID."""
        result = await self.session.execute(
            select(Newsletter).where(Newsletter.id == newsletter_id)
        )
        return result.scalar_one_or_none()

    async def get_by_ids(self, newsletter_ids: Sequence[str]) -> list[Newsletter]:
        """Get newsletters by ID, newest first. Unknown IDs are ignored."""
        if not newsletter_ids:
            return []
        result = await self.session.execute(
            select(Newsletter)
            .where(Newsletter.id.in_(list(newsletter_ids)))
            .order_by(*NEWEST_FIRST)
        )
        newsletters = list(result.scalars().all())

        missing = set(newsletter_ids) - {n.id for n in newsletters}
        if missing:
            logger.warning(
                "Some requested newsletters were not found",
                extra={"missing_ids": sorted(missing)},
            )
        return newsletters

    async def get_all(self, limit: int | None = None) -> list[Newsletter]:
        """Get all newsletters, newest first.

        Args:
            limit: Optional maximum number of newsletters
        """
        start_time = time.monotonic()
        stmt = select(Newsletter).order_by(*NEWEST_FIRST)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        newsletters = list(result.scalars().all())

        duration_ms = (time.monotonic() - start_time) * 1000
        if duration_ms > self.SLOW_OPERATION_THRESHOLD_MS:
            db_logger.slow_query(
                query="SELECT newsletters",
                duration_ms=duration_ms,
                table=self.TABLE_NAME,
            )
        return newsletters

    async def get_untagged(self, limit: int | None = None) -> list[Newsletter]:
        """Get newsletters that carry no tags, newest first.

        Args:
            limit: Optional maximum number of newsletters
        """
        has_tags = exists().where(NewsletterTag.newsletter_id == Newsletter.id)
        stmt = select(Newsletter).where(~has_tags).order_by(*NEWEST_FIRST)
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self.session.execute(stmt)
        newsletters = list(result.scalars().all())
        logger.debug(
            f"Found {len(newsletters)} untagged newsletters",
            extra={"count": len(newsletters), "limit": limit},
        )
        return newsletters
