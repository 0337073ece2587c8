"""Integrations layer - External service clients.

Integrations handle communication with external APIs and services.
They abstract the details of external service protocols.
"""

from tagger.integrations.claude import (
    ClaudeAuthError,
    ClaudeClient,
    ClaudeError,
    ClaudeRateLimitError,
    ClaudeTimeoutError,
    CompletionResult,
    extract_json,
    parse_retry_after,
    raise_for_completion,
)

__all__ = [
    "ClaudeAuthError",
    "ClaudeClient",
    "ClaudeError",
    "ClaudeRateLimitError",
    "ClaudeTimeoutError",
    "CompletionResult",
    "extract_json",
    "parse_retry_after",
    "raise_for_completion",
]
