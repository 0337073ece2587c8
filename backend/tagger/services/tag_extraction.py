"""Tag extraction service: raw topic tags for each newsletter via Claude.

Each newsletter becomes one Claude completion asking for 3-8 free-text topic
tags. Calls run through the bounded-concurrency batch executor and each call
is wrapped by the single rate-limit retry. Nothing is persisted here; raw
tags are returned for canonicalization.
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass, field

from pydantic import ValidationError

from tagger.core.config import Settings, get_settings
from tagger.core.logging import get_logger, tagging_logger
from tagger.integrations.claude import ClaudeClient, extract_json, raise_for_completion
from tagger.models.newsletter import Newsletter
from tagger.schemas.tag import TagExtractionResponse
from tagger.utils.batch import BatchResult, process_batch
from tagger.utils.retry import call_with_rate_limit_retry

logger = get_logger(__name__)

EXTRACTION_TEMPERATURE = 0.3
PROGRESS_LOG_INTERVAL = 10

EXTRACTION_SYSTEM_PROMPT = """You are a content analyst specializing in extracting relevant tags from newsletter content.

Your task is to analyze newsletter content and extract 3-8 meaningful tags that:
- Capture the main topics and themes discussed
- Are specific enough to be useful for categorization
- Include both broad topics (e.g., "technology", "business") and specific concepts (e.g., "machine learning", "startup funding")
- Use clear, professional terminology
- Avoid overly generic tags like "update", "news", "thoughts"

Guidelines:
- Extract 3-8 tags per newsletter (aim for 5-6 when possible)
- Use singular form for nouns (e.g., "book" not "books")
- Prefer full phrases when appropriate (e.g., "machine learning" rather than just "ML")
- Include both technical and non-technical tags when relevant

Respond ONLY with valid JSON in this exact format:
{"tags": ["artificial intelligence", "ethics", "technology policy"]}"""


class TagExtractionError(Exception):
    """Raised when a Claude response cannot be turned into a tag list."""

    def __init__(self, message: str, response_text: str | None = None) -> None:
        super().__init__(message)
        self.response_text = response_text


@dataclass
class ExtractionResult:
    """Raw tags for every newsletter that was successfully processed.

    Attributes:
        raw_tags_by_newsletter: Newsletter ID -> raw tags in response order
        all_raw_tags: Union of every raw tag across newsletters
        batch: Underlying executor result (failures keep their error)
    """

    raw_tags_by_newsletter: dict[str, list[str]] = field(default_factory=dict)
    all_raw_tags: set[str] = field(default_factory=set)
    batch: BatchResult[Newsletter, list[str]] = field(default_factory=BatchResult)

    @property
    def failed_newsletter_ids(self) -> list[str]:
        return [failure.item.id for failure in self.batch.failed]


def truncate_content(content: str, max_chars: int) -> str:
    """Cut content at max_chars and mark the cut so it reads as incomplete."""
    if len(content) <= max_chars:
        return content
    return f"{content[:max_chars]}\n\n... (truncated, {len(content)} total chars)"


def build_extraction_prompt(newsletter: Newsletter, max_chars: int) -> str:
    """Build the user prompt for one newsletter."""
    content = truncate_content(newsletter.content or "", max_chars)
    return f"""Analyze this newsletter and extract 3-8 meaningful tags:

SUBJECT: {newsletter.subject}

CONTENT:
{content}

Extract tags that capture the key topics, themes, and concepts discussed. Return only JSON with a "tags" array."""


def parse_extraction_response(response_text: str) -> list[str]:
    """Parse Claude's extraction response into a cleaned tag list.

    Raises:
        TagExtractionError: If the response is not JSON or not {"tags": [...]}
    """
    try:
        parsed = json.loads(extract_json(response_text))
    except json.JSONDecodeError as e:
        raise TagExtractionError(
            f"Response is not valid JSON: {e}", response_text=response_text
        ) from e

    try:
        return TagExtractionResponse.model_validate(parsed).tags
    except ValidationError as e:
        raise TagExtractionError(
            f"Response has unexpected shape: {e.error_count()} validation errors",
            response_text=response_text,
        ) from e


class TagExtractionService:
    """Service for extracting raw tags from newsletters with Claude."""

    def __init__(
        self, claude_client: ClaudeClient, settings: Settings | None = None
    ) -> None:
        """Initialize the tag extraction service.

        Args:
            claude_client: ClaudeClient for LLM operations.
            settings: Tagging settings. Defaults to get_settings().
        """
        self._claude = claude_client
        self._settings = settings or get_settings()

    async def extract_tags(self, newsletter: Newsletter) -> list[str]:
        """Extract raw tags for a single newsletter.

        Args:
            newsletter: Newsletter to classify

        Returns:
            Raw tags as returned by Claude (cleaned, at most 8)

        Raises:
            ClaudeRateLimitError: If still rate limited after one retry
            ClaudeTimeoutError: If the final attempt timed out
            ClaudeError: On any other Claude failure
            TagExtractionError: If the response cannot be parsed
        """
        user_prompt = build_extraction_prompt(
            newsletter, self._settings.tagging_max_content_chars
        )

        async def call() -> str:
            completion = await self._claude.complete(
                user_prompt=user_prompt,
                system_prompt=EXTRACTION_SYSTEM_PROMPT,
                temperature=EXTRACTION_TEMPERATURE,
            )
            return raise_for_completion(completion)

        response_text = await call_with_rate_limit_retry(
            call,
            cooldown_seconds=self._settings.tagging_rate_limit_cooldown,
            operation=f"tag extraction for newsletter {newsletter.id}",
        )
        tags = parse_extraction_response(response_text)

        logger.debug(
            f"Extracted {len(tags)} tags",
            extra={"newsletter_id": newsletter.id, "tags": tags},
        )
        return tags

    async def extract_all(self, newsletters: Sequence[Newsletter]) -> ExtractionResult:
        """Extract raw tags for every newsletter.

        Failed newsletters are recorded in the batch result and contribute no
        tags; they are not retried again within this call.
        """
        concurrency = self._settings.tagging_extraction_concurrency
        delay_seconds = self._settings.tagging_batch_delay_seconds
        tagging_logger.extraction_start(len(newsletters), concurrency, delay_seconds)

        def on_progress(completed: int, total: int, _newsletter: Newsletter) -> None:
            if completed % PROGRESS_LOG_INTERVAL == 0 or completed == total:
                tagging_logger.extraction_progress(completed, total)

        def on_error(error: Exception, newsletter: Newsletter, _index: int) -> None:
            tagging_logger.extraction_failure(newsletter.id, error)

        batch = await process_batch(
            newsletters,
            lambda newsletter, _index: self.extract_tags(newsletter),
            concurrency=concurrency,
            delay_seconds=delay_seconds,
            on_progress=on_progress,
            on_error=on_error,
        )

        result = ExtractionResult(batch=batch)
        for success in batch.successful:
            result.raw_tags_by_newsletter[success.item.id] = success.result
            result.all_raw_tags.update(success.result)

        tagging_logger.extraction_complete(
            processed=len(batch.successful),
            failed=len(batch.failed),
            unique_raw_tags=len(result.all_raw_tags),
            duration_ms=batch.duration_ms,
        )
        return result
