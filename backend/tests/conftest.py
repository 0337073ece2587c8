"""Pytest configuration and fixtures.

Provides fixtures for:
- Database with SQLite in-memory (fresh schema per test)
- Settings override for testing (no delays, no cooldowns)
- Newsletter seeding
- Claude client mocking
"""

import asyncio
import json
import re
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import tagger.models  # noqa: F401
from tagger.core.config import Settings
from tagger.core.database import Base, enable_sqlite_foreign_keys
from tagger.integrations.claude import CompletionResult
from tagger.models.newsletter import Newsletter
from tagger.repositories.newsletter import NewsletterRepository
from tagger.services.tag_canonicalization import CANONICALIZATION_SYSTEM_PROMPT

# ---------------------------------------------------------------------------
# Settings Fixtures
# ---------------------------------------------------------------------------


def get_test_settings(**overrides: object) -> Settings:
    """Get test settings with an in-memory database and no waiting."""
    values: dict[str, object] = {
        "app_name": "Test Tagger",
        "environment": "test",
        "debug": True,
        "database_url": "sqlite+aiosqlite:///:memory:",
        "log_level": "DEBUG",
        "log_format": "text",
        "anthropic_api_key": "test-key",
        "tagging_extraction_concurrency": 3,
        "tagging_batch_delay_seconds": 0.0,
        "tagging_rate_limit_cooldown": 0.0,
        "tagging_retry_delay_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


@pytest.fixture
def test_settings() -> Settings:
    """Test settings."""
    return get_test_settings()


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create async SQLite engine for testing.

    Uses SQLite with aiosqlite driver for fast, in-memory testing.
    StaticPool keeps the single in-memory connection alive for the test.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )
    enable_sqlite_foreign_keys(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def async_session_factory(
    async_engine: AsyncEngine,
) -> async_sessionmaker[AsyncSession]:
    """Create async session factory for testing."""
    return async_sessionmaker(
        bind=async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def db_session(
    async_session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with async_session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Data Fixtures
# ---------------------------------------------------------------------------

NewsletterFactory = Callable[..., Awaitable[Newsletter]]


@pytest.fixture
def make_newsletter(db_session: AsyncSession) -> NewsletterFactory:
    """Factory that stores a newsletter and returns it.

    Newsletters created later get a later publish date unless one is given.
    """
    repo = NewsletterRepository(db_session)
    base_date = datetime(2024, 1, 1, tzinfo=UTC)
    counter = {"n": 0}

    async def _make(
        newsletter_id: str,
        subject: str | None = None,
        body: str = "Body text",
        normalized_markdown: str | None = None,
        publish_date: datetime | None = None,
    ) -> Newsletter:
        counter["n"] += 1
        return await repo.create(
            newsletter_id=newsletter_id,
            subject=subject or f"Subject {newsletter_id}",
            body=body,
            normalized_markdown=normalized_markdown,
            publish_date=publish_date or base_date + timedelta(days=counter["n"]),
        )

    return _make


# ---------------------------------------------------------------------------
# Mock Claude Client
# ---------------------------------------------------------------------------

SUBJECT_RE = re.compile(r"^SUBJECT: (.*)$", re.MULTILINE)


class MockClaudeClient:
    """Mock Claude client for testing the tagging services.

    Extraction requests are answered per newsletter subject, canonicalization
    requests from a separate queue. A queue entry may be a list of tags, a
    dict (sent as JSON), a raw string, a CompletionResult (e.g. a 429) or an
    exception to raise. The last entry of a queue repeats.
    """

    def __init__(
        self,
        extraction: dict[str, list[Any]] | None = None,
        canonicalization: list[Any] | None = None,
        available: bool = True,
        latency: float = 0.0,
    ) -> None:
        """Initialize mock client.

        Args:
            extraction: Newsletter subject -> queue of responses.
                Unknown subjects get {"tags": []}.
            canonicalization: Queue of responses. Defaults to an empty
                mapping (every tag maps to itself).
            available: Value of the available property.
            latency: Seconds each call takes.
        """
        self.extraction = extraction or {}
        self.canonicalization = canonicalization or [{"mapping": {}}]
        self.available = available
        self.latency = latency

        # Track calls
        self.complete_calls: list[dict[str, Any]] = []
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def extraction_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.complete_calls if not c["is_canonicalization"]]

    @property
    def canonicalization_calls(self) -> list[dict[str, Any]]:
        return [c for c in self.complete_calls if c["is_canonicalization"]]

    async def complete(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.0,
    ) -> CompletionResult:
        """Mock completion request."""
        is_canonicalization = system_prompt == CANONICALIZATION_SYSTEM_PROMPT
        match = SUBJECT_RE.search(user_prompt)
        subject = match.group(1) if match and not is_canonicalization else None
        self.complete_calls.append({
            "user_prompt": user_prompt,
            "system_prompt": system_prompt,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "is_canonicalization": is_canonicalization,
            "subject": subject,
        })

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.latency)
        finally:
            self.in_flight -= 1

        if is_canonicalization:
            queue = self.canonicalization
        else:
            queue = self.extraction.setdefault(subject or "", [{"tags": []}])
        response = queue.pop(0) if len(queue) > 1 else queue[0]

        if isinstance(response, BaseException):
            raise response
        if isinstance(response, CompletionResult):
            return response
        if isinstance(response, list):
            response = {"tags": response}
        text = response if isinstance(response, str) else json.dumps(response)
        return CompletionResult(success=True, text=text, input_tokens=10, output_tokens=10)


@pytest.fixture
def make_claude() -> type[MockClaudeClient]:
    """Factory for MockClaudeClient instances."""
    return MockClaudeClient
