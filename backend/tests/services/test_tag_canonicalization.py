"""Unit tests for TagCanonicalizationService.

Tests cover:
- Empty input makes no Claude call
- Mapping is total over the input (omitted tags map to themselves)
- Flat mapping objects and invented keys
- Degraded identity fallback on any failure
- Oversized tag set warning
"""

from typing import Any
from unittest.mock import patch

import pytest

from tagger.core.config import Settings
from tagger.integrations.claude import CompletionResult
from tagger.services.tag_canonicalization import (
    CANONICALIZATION_SYSTEM_PROMPT,
    TagCanonicalizationService,
    build_canonicalization_prompt,
    identity_mapping,
)

RATE_LIMITED = CompletionResult(success=False, error="Rate limit exceeded", status_code=429)


class TestHelpers:
    """Test prompt and fallback helpers."""

    def test_identity_mapping(self) -> None:
        assert identity_mapping(["AI", "ml"]) == {"AI": "AI", "ml": "ml"}

    def test_prompt_numbers_every_tag(self) -> None:
        prompt = build_canonicalization_prompt(["AI", "ML", "ai"])

        assert "Normalize these 3 tags" in prompt
        assert "1. AI" in prompt
        assert "2. ML" in prompt
        assert "3. ai" in prompt


class TestCanonicalize:
    """Test TagCanonicalizationService.canonicalize."""

    @pytest.mark.asyncio
    async def test_empty_input_makes_no_call(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude()
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(set())

        assert result.mapping == {}
        assert result.degraded is False
        assert claude.complete_calls == []

    @pytest.mark.asyncio
    async def test_merges_variants(self, make_claude: Any, test_settings: Settings) -> None:
        claude = make_claude(
            canonicalization=[
                {
                    "mapping": {
                        "AI": "artificial intelligence",
                        "ai": "artificial intelligence",
                        "Artificial Intelligence": "artificial intelligence",
                        "ML": "machine learning",
                    }
                }
            ]
        )
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(
            {"AI", "ai", "Artificial Intelligence", "ML"}
        )

        assert result.mapping == {
            "AI": "artificial intelligence",
            "ai": "artificial intelligence",
            "Artificial Intelligence": "artificial intelligence",
            "ML": "machine learning",
        }
        assert result.canonical_tags == {"artificial intelligence", "machine learning"}
        assert result.degraded is False

        call = claude.canonicalization_calls[0]
        assert call["system_prompt"] == CANONICALIZATION_SYSTEM_PROMPT
        assert call["temperature"] == 0.1
        assert call["max_tokens"] == test_settings.tagging_canonicalization_max_tokens

    @pytest.mark.asyncio
    async def test_omitted_tags_map_to_themselves(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=[{"mapping": {"AI": "artificial intelligence"}}])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI", "ethics", "policy"])

        assert result.mapping == {
            "AI": "artificial intelligence",
            "ethics": "ethics",
            "policy": "policy",
        }

    @pytest.mark.asyncio
    async def test_flat_mapping_accepted(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=[{"ML": "machine learning"}])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["ML"])

        assert result.mapping == {"ML": "machine learning"}

    @pytest.mark.asyncio
    async def test_overlong_canonical_falls_back_to_raw(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(
            canonicalization=[{"mapping": {"AI": "a" * 300, "ML": "machine learning"}}]
        )
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI", "ML"])

        assert result.mapping == {"AI": "AI", "ML": "machine learning"}
        assert result.degraded is False

    @pytest.mark.asyncio
    async def test_invented_keys_ignored(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(
            canonicalization=[{"mapping": {"AI": "ai", "Blockchain": "crypto"}}]
        )
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI"])

        assert result.mapping == {"AI": "ai"}

    @pytest.mark.asyncio
    async def test_blank_canonical_value_falls_back(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=[{"mapping": {"AI": "  ", "ML": None}}])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI", "ML"])

        assert result.mapping == {"AI": "AI", "ML": "ML"}

    @pytest.mark.asyncio
    async def test_rate_limit_retried_once(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=[RATE_LIMITED, {"mapping": {"AI": "ai"}}])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI"])

        assert result.mapping == {"AI": "ai"}
        assert result.degraded is False
        assert len(claude.canonicalization_calls) == 2


class TestCanonicalizeDegraded:
    """Test the identity fallback."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            "not json at all",
            '["a", "list"]',
            '{"mapping": "nope"}',
            CompletionResult(success=False, error="Server error (500)", status_code=500),
            RuntimeError("connection dropped"),
        ],
    )
    async def test_failure_falls_back_to_identity(
        self, make_claude: Any, test_settings: Settings, response: Any
    ) -> None:
        claude = make_claude(canonicalization=[response])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI", "ai"])

        assert result.degraded is True
        assert result.mapping == {"AI": "AI", "ai": "ai"}

    @pytest.mark.asyncio
    async def test_persistent_rate_limit_degrades(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=[RATE_LIMITED])
        service = TagCanonicalizationService(claude, test_settings)

        result = await service.canonicalize(["AI"])

        assert result.degraded is True
        assert len(claude.canonicalization_calls) == 2

    @pytest.mark.asyncio
    async def test_degraded_is_logged(
        self, make_claude: Any, test_settings: Settings
    ) -> None:
        claude = make_claude(canonicalization=["garbage"])
        service = TagCanonicalizationService(claude, test_settings)

        with patch("tagger.services.tag_canonicalization.tagging_logger") as mock_logger:
            await service.canonicalize(["AI"])

        mock_logger.canonicalization_degraded.assert_called_once()


class TestOversizedTagSet:
    """Test the scaling warning."""

    @pytest.mark.asyncio
    async def test_warns_above_threshold(self, make_claude: Any) -> None:
        settings = Settings(
            anthropic_api_key="test-key",
            tagging_rate_limit_cooldown=0.0,
            tagging_canonicalization_warn_threshold=2,
        )
        claude = make_claude()
        service = TagCanonicalizationService(claude, settings)

        with patch("tagger.services.tag_canonicalization.tagging_logger") as mock_logger:
            result = await service.canonicalize(["a", "b", "c"])

        mock_logger.canonicalization_oversized.assert_called_once_with(3, 2)
        # Still a single request
        assert len(claude.canonicalization_calls) == 1
        assert result.mapping == {"a": "a", "b": "b", "c": "c"}

    @pytest.mark.asyncio
    async def test_no_warning_at_threshold(self, make_claude: Any) -> None:
        settings = Settings(
            anthropic_api_key="test-key",
            tagging_rate_limit_cooldown=0.0,
            tagging_canonicalization_warn_threshold=3,
        )
        service = TagCanonicalizationService(make_claude(), settings)

        with patch("tagger.services.tag_canonicalization.tagging_logger") as mock_logger:
            await service.canonicalize(["a", "b", "c"])

        mock_logger.canonicalization_oversized.assert_not_called()
