"""Tag canonicalization service: one Claude call that merges raw tag variants.

The whole raw tag set goes to Claude in a single request so that variants of
the same topic (case, abbreviation, plural, near-synonym) are always seen
together. The returned mapping is made total over the input: omitted raw tags
map to themselves. When the call fails for any reason the identity mapping is
used and the result is marked degraded, so a run always finishes.

Scaling limit: the request grows with the number of distinct raw tags. Above
tagging_canonicalization_warn_threshold a warning is logged; splitting the
set would hide duplicates that land in different chunks, so it is not done.
"""

import json
import time
from collections.abc import Iterable
from dataclasses import dataclass, field

from tagger.core.config import Settings, get_settings
from tagger.core.logging import get_logger, tagging_logger
from tagger.integrations.claude import ClaudeClient, extract_json, raise_for_completion
from tagger.schemas.tag import TagMappingResponse
from tagger.utils.retry import call_with_rate_limit_retry

logger = get_logger(__name__)

CANONICALIZATION_TEMPERATURE = 0.1

CANONICALIZATION_SYSTEM_PROMPT = """You are a tag normalization expert. Given a list of tags, identify duplicates and similar tags that should be merged.

Consider:
- Different capitalizations (e.g., "AI" vs "ai")
- Abbreviations vs full forms (e.g., "AI" vs "Artificial Intelligence")
- Plural vs singular (e.g., "books" vs "book")
- Similar concepts (e.g., "machine learning" vs "ML")
- Spelling variations

For each group of similar tags, choose the BEST canonical form (most clear and professional).

Respond ONLY with valid JSON in this exact format:
{
  "mapping": {
    "AI": "artificial intelligence",
    "Artificial Intelligence": "artificial intelligence",
    "ML": "machine learning",
    "machine learning": "machine learning"
  }
}

Every input tag must appear as a key. If a tag should not be merged with others, map it to itself."""


@dataclass
class CanonicalizationResult:
    """Raw tag -> canonical tag mapping covering every input raw tag.

    Attributes:
        mapping: Total mapping over the input raw tags
        degraded: True when the identity fallback was used
    """

    mapping: dict[str, str] = field(default_factory=dict)
    degraded: bool = False

    @property
    def canonical_tags(self) -> set[str]:
        return set(self.mapping.values())


def identity_mapping(raw_tags: Iterable[str]) -> dict[str, str]:
    """Map every raw tag to itself."""
    return {tag: tag for tag in raw_tags}


def build_canonicalization_prompt(raw_tags: list[str]) -> str:
    """Build the user prompt enumerating every raw tag."""
    numbered = "\n".join(f"{i}. {tag}" for i, tag in enumerate(raw_tags, start=1))
    return f"""Normalize these {len(raw_tags)} tags:

{numbered}

Return only JSON with a "mapping" object from each original tag to its canonical form."""


class TagCanonicalizationService:
    """Service for collapsing raw tag variants into canonical tags."""

    def __init__(
        self, claude_client: ClaudeClient, settings: Settings | None = None
    ) -> None:
        """Initialize the tag canonicalization service.

        Args:
            claude_client: ClaudeClient for LLM operations.
            settings: Tagging settings. Defaults to get_settings().
        """
        self._claude = claude_client
        self._settings = settings or get_settings()

    async def canonicalize(self, all_raw_tags: Iterable[str]) -> CanonicalizationResult:
        """Map every raw tag to a canonical display form.

        Never raises for Claude or response failures; those produce a
        degraded identity mapping instead.
        """
        raw_tags = sorted(set(all_raw_tags))
        if not raw_tags:
            return CanonicalizationResult()

        start_time = time.monotonic()
        tagging_logger.canonicalization_start(len(raw_tags))

        threshold = self._settings.tagging_canonicalization_warn_threshold
        if len(raw_tags) > threshold:
            tagging_logger.canonicalization_oversized(len(raw_tags), threshold)

        try:
            response = await self._request_mapping(raw_tags)
        except Exception as e:
            tagging_logger.canonicalization_degraded(len(raw_tags), e)
            return CanonicalizationResult(mapping=identity_mapping(raw_tags), degraded=True)

        mapping = {tag: response.mapping.get(tag, tag) for tag in raw_tags}
        omitted = sum(1 for tag in raw_tags if tag not in response.mapping)
        invented = set(response.mapping) - set(raw_tags)
        if invented:
            logger.debug(
                "Ignoring mapping keys that were not input tags",
                extra={"invented_keys": sorted(invented)[:20], "count": len(invented)},
            )

        result = CanonicalizationResult(mapping=mapping)
        tagging_logger.canonicalization_complete(
            raw_tag_count=len(raw_tags),
            canonical_tag_count=len(result.canonical_tags),
            omitted_count=omitted,
            duration_ms=(time.monotonic() - start_time) * 1000,
        )
        return result

    async def _request_mapping(self, raw_tags: list[str]) -> TagMappingResponse:
        user_prompt = build_canonicalization_prompt(raw_tags)

        async def call() -> str:
            completion = await self._claude.complete(
                user_prompt=user_prompt,
                system_prompt=CANONICALIZATION_SYSTEM_PROMPT,
                temperature=CANONICALIZATION_TEMPERATURE,
                max_tokens=self._settings.tagging_canonicalization_max_tokens,
            )
            return raise_for_completion(completion)

        response_text = await call_with_rate_limit_retry(
            call,
            cooldown_seconds=self._settings.tagging_rate_limit_cooldown,
            operation="tag canonicalization",
        )
        return TagMappingResponse.model_validate(json.loads(extract_json(response_text)))
