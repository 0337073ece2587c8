"""Tests for NewsletterRepository.

Tests cover:
- create and get_by_id
- Newest-first ordering and limits
- get_by_ids with unknown IDs
- get_untagged
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tagger.models.newsletter import Newsletter
from tagger.repositories.newsletter import NewsletterRepository
from tagger.repositories.tag import TagRepository

NewsletterFactory = Callable[..., Awaitable[Newsletter]]


@pytest.fixture
def repo(db_session: AsyncSession) -> NewsletterRepository:
    return NewsletterRepository(db_session)


class TestCreate:
    """Test NewsletterRepository.create."""

    @pytest.mark.asyncio
    async def test_create_and_get(self, repo: NewsletterRepository) -> None:
        created = await repo.create(
            newsletter_id="n1",
            subject="Weekly digest",
            body="<p>raw</p>",
            normalized_markdown="# Weekly digest",
            publish_date=datetime(2024, 5, 1, tzinfo=UTC),
        )

        fetched = await repo.get_by_id("n1")

        assert fetched is created
        assert fetched.content == "# Weekly digest"

    @pytest.mark.asyncio
    async def test_content_falls_back_to_body(self, repo: NewsletterRepository) -> None:
        newsletter = await repo.create(newsletter_id="n1", subject="s", body="plain body")

        assert newsletter.content == "plain body"

    @pytest.mark.asyncio
    async def test_duplicate_id_rejected(
        self, repo: NewsletterRepository, db_session: AsyncSession
    ) -> None:
        await repo.create(newsletter_id="n1", subject="s", body="b")
        db_session.expunge_all()

        with pytest.raises(IntegrityError):
            await repo.create(newsletter_id="n1", subject="s", body="b")

    @pytest.mark.asyncio
    async def test_get_missing(self, repo: NewsletterRepository) -> None:
        assert await repo.get_by_id("missing") is None


class TestListing:
    """Test ordering, limits and filters."""

    @pytest.mark.asyncio
    async def test_get_all_newest_first(
        self, repo: NewsletterRepository, make_newsletter: NewsletterFactory
    ) -> None:
        await make_newsletter("oldest")
        await make_newsletter("middle")
        await make_newsletter("newest")

        assert [n.id for n in await repo.get_all()] == ["newest", "middle", "oldest"]
        assert [n.id for n in await repo.get_all(limit=2)] == ["newest", "middle"]

    @pytest.mark.asyncio
    async def test_undated_newsletters_sort_last(
        self, repo: NewsletterRepository, make_newsletter: NewsletterFactory
    ) -> None:
        await repo.create(newsletter_id="undated", subject="s", body="b")
        await make_newsletter("dated")

        assert [n.id for n in await repo.get_all()] == ["dated", "undated"]

    @pytest.mark.asyncio
    async def test_get_by_ids_ignores_unknown(
        self, repo: NewsletterRepository, make_newsletter: NewsletterFactory
    ) -> None:
        await make_newsletter("n1")
        await make_newsletter("n2")
        await make_newsletter("n3")

        newsletters = await repo.get_by_ids(["n1", "n3", "missing"])

        assert [n.id for n in newsletters] == ["n3", "n1"]
        assert await repo.get_by_ids([]) == []

    @pytest.mark.asyncio
    async def test_get_untagged(
        self,
        repo: NewsletterRepository,
        db_session: AsyncSession,
        make_newsletter: NewsletterFactory,
    ) -> None:
        await make_newsletter("tagged")
        await make_newsletter("untagged-old")
        await make_newsletter("untagged-new")
        await TagRepository(db_session).add_tag_to_newsletter("tagged", "Python")

        untagged = await repo.get_untagged()

        assert [n.id for n in untagged] == ["untagged-new", "untagged-old"]
        assert [n.id for n in await repo.get_untagged(limit=1)] == ["untagged-new"]
