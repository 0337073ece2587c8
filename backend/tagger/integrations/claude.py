"""Claude/Anthropic LLM integration client for newsletter tagging.

Features:
- Async HTTP client using httpx (direct API calls)
- Retry logic with exponential backoff for timeouts, transport errors and 5xx
- Rate limits (429) are returned to the caller immediately so the tagging
  pipeline can apply its own cooldown-and-retry policy
- Request/response logging per requirements
- Masks API keys in all logs
- Token usage logging for quota tracking

ERROR LOGGING REQUIREMENTS:
- Log all outbound API calls with endpoint, method, timing
- Log request/response bodies at DEBUG level (truncate large responses)
- Log and handle: timeouts, rate limits (429), auth failures (401/403)
- Include retry attempt number in logs
- Log API quota/credit usage if available
- Mask API keys and tokens in all logs
"""

import asyncio
import math
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from tagger.core.config import get_settings
from tagger.core.logging import claude_logger, get_logger

logger = get_logger(__name__)

# Anthropic API base URL
ANTHROPIC_API_URL = "https://api.anthropic.com"
ANTHROPIC_API_VERSION = "2023-06-01"


@dataclass
class CompletionResult:
    """Result of a Claude completion request."""

    success: bool
    text: str | None = None
    stop_reason: str | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None
    error: str | None = None
    status_code: int | None = None
    retry_after: float | None = None
    duration_ms: float = 0.0
    request_id: str | None = None
    timed_out: bool = False


class ClaudeError(Exception):
    """Base exception for Claude API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body
        self.request_id = request_id


class ClaudeTimeoutError(ClaudeError):
    """Raised when a request times out."""

    pass


class ClaudeRateLimitError(ClaudeError):
    """Raised when rate limited (429)."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        response_body: dict[str, Any] | None = None,
        request_id: str | None = None,
    ) -> None:
        super().__init__(
            message, status_code=429, response_body=response_body, request_id=request_id
        )
        self.retry_after = retry_after


class ClaudeAuthError(ClaudeError):
    """Raised when authentication fails (401/403)."""

    pass


def raise_for_completion(result: CompletionResult) -> str:
    """Return the text of a successful completion or raise its error.

    Args:
        result: CompletionResult from ClaudeClient.complete

    Returns:
        The response text

    Raises:
        ClaudeRateLimitError: If the request was rate limited (429)
        ClaudeTimeoutError: If the final attempt timed out
        ClaudeAuthError: If authentication failed (401/403)
        ClaudeError: For any other unsuccessful completion
    """
    if result.success:
        return result.text or ""

    message = result.error or "Claude request failed"
    if result.timed_out:
        raise ClaudeTimeoutError(message, request_id=result.request_id)
    if result.status_code == 429:
        raise ClaudeRateLimitError(
            message, retry_after=result.retry_after, request_id=result.request_id
        )
    if result.status_code in (401, 403):
        raise ClaudeAuthError(
            message, status_code=result.status_code, request_id=result.request_id
        )
    raise ClaudeError(
        message, status_code=result.status_code, request_id=result.request_id
    )


def extract_json(response_text: str) -> str:
    """Strip markdown code fences that Claude sometimes wraps JSON in."""
    json_text = response_text.strip()
    if json_text.startswith("```"):
        lines = json_text.split("\n")
        lines = lines[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        json_text = "\n".join(lines).strip()
    return json_text


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given as delta-seconds or an HTTP-date.

    Returns None when the header is missing or unparseable.
    """
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(seconds, 0.0) if math.isfinite(seconds) else None
    try:
        retry_at = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        logger.debug("Ignoring unparseable Retry-After header", extra={"value": value})
        return None
    if retry_at.tzinfo is None:
        retry_at = retry_at.replace(tzinfo=UTC)
    return max((retry_at - datetime.now(UTC)).total_seconds(), 0.0)


class ClaudeClient:
    """Async client for Claude/Anthropic API.

    Provides LLM capabilities with:
    - Retry logic with exponential backoff
    - Immediate return on rate limits
    - Comprehensive logging
    """

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        max_tokens: int | None = None,
    ) -> None:
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key. Defaults to settings.
            model: Model to use. Defaults to settings (claude-3-haiku).
            timeout: Request timeout in seconds. Defaults to settings.
            max_retries: Maximum attempts per request. Defaults to settings.
            retry_delay: Base delay between retries. Defaults to settings.
            max_tokens: Maximum response tokens. Defaults to settings.
        """
        settings = get_settings()

        self._api_key = api_key or settings.anthropic_api_key
        self._model = model or settings.claude_model
        self._timeout = timeout or settings.claude_timeout
        self._max_retries = max_retries or settings.claude_max_retries
        self._retry_delay = (
            retry_delay if retry_delay is not None else settings.claude_retry_delay
        )
        self._max_tokens = max_tokens or settings.claude_max_tokens

        # HTTP client (created lazily)
        self._client: httpx.AsyncClient | None = None
        self._available = bool(self._api_key)

        logger.debug(
            "ClaudeClient instantiated",
            extra={
                "available": self._available,
                "model": self._model,
                "max_retries": self._max_retries,
            },
        )

    @property
    def available(self) -> bool:
        """Check if Claude is configured and available."""
        return self._available

    @property
    def model(self) -> str:
        """Get the model being used."""
        return self._model

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers: dict[str, str] = {
                "Content-Type": "application/json",
                "Accept": "application/json",
                "anthropic-version": ANTHROPIC_API_VERSION,
            }
            if self._api_key:
                headers["x-api-key"] = self._api_key

            self._client = httpx.AsyncClient(
                base_url=ANTHROPIC_API_URL,
                headers=headers,
                timeout=httpx.Timeout(self._timeout),
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("Claude client closed")

    async def __aenter__(self) -> "ClaudeClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _backoff_delay(self, attempt: int) -> float:
        return self._retry_delay * (2**attempt)

    async def complete(
        self,
        user_prompt: str,
        system_prompt: str | None = None,
        max_tokens: int | None = None,
        temperature: float = 0.0,
    ) -> CompletionResult:
        """Send a completion request to Claude.

        Args:
            user_prompt: The user message/prompt
            system_prompt: Optional system prompt
            max_tokens: Maximum response tokens (overrides default)
            temperature: Sampling temperature (0.0 = deterministic)

        Returns:
            CompletionResult with response text and metadata. Failures are
            reported through success=False and status_code, never raised.
        """
        if not self._available:
            return CompletionResult(
                success=False,
                error="Claude not configured (missing API key)",
            )

        start_time = time.monotonic()
        client = await self._get_client()
        last_error: str | None = None
        last_status: int | None = None
        timed_out = False
        request_id: str | None = None

        # Build request body
        request_body: dict[str, Any] = {
            "model": self._model,
            "max_tokens": max_tokens or self._max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        if system_prompt:
            request_body["system"] = system_prompt

        for attempt in range(self._max_retries):
            attempt_start = time.monotonic()

            try:
                claude_logger.api_call_start(
                    self._model,
                    len(user_prompt),
                    retry_attempt=attempt,
                    request_id=request_id,
                )
                if system_prompt:
                    claude_logger.request_body(self._model, system_prompt, user_prompt)

                response = await client.post("/v1/messages", json=request_body)
                duration_ms = (time.monotonic() - attempt_start) * 1000
                request_id = response.headers.get("request-id")

                if response.status_code == 429:
                    # Cooldown policy belongs to the caller
                    retry_after = parse_retry_after(response.headers.get("retry-after"))
                    claude_logger.rate_limit(
                        self._model, retry_after=retry_after, request_id=request_id
                    )
                    return CompletionResult(
                        success=False,
                        error="Rate limit exceeded",
                        status_code=429,
                        retry_after=retry_after,
                        request_id=request_id,
                        duration_ms=duration_ms,
                    )

                if response.status_code in (401, 403):
                    claude_logger.auth_failure(response.status_code)
                    claude_logger.api_call_error(
                        self._model,
                        duration_ms,
                        response.status_code,
                        "Authentication failed",
                        "AuthError",
                        retry_attempt=attempt,
                        request_id=request_id,
                    )
                    return CompletionResult(
                        success=False,
                        error=f"Authentication failed ({response.status_code})",
                        status_code=response.status_code,
                        request_id=request_id,
                        duration_ms=duration_ms,
                    )

                if response.status_code >= 500:
                    last_error = f"Server error ({response.status_code})"
                    last_status = response.status_code
                    timed_out = False
                    claude_logger.api_call_error(
                        self._model,
                        duration_ms,
                        response.status_code,
                        last_error,
                        "ServerError",
                        retry_attempt=attempt,
                        request_id=request_id,
                    )
                    if attempt < self._max_retries - 1:
                        delay = self._backoff_delay(attempt)
                        logger.warning(
                            f"Claude request attempt {attempt + 1} failed, "
                            f"retrying in {delay}s",
                            extra={
                                "attempt": attempt + 1,
                                "max_retries": self._max_retries,
                                "delay_seconds": delay,
                                "status_code": response.status_code,
                                "request_id": request_id,
                            },
                        )
                        await asyncio.sleep(delay)
                    continue

                if response.status_code >= 400:
                    # Client error - don't retry
                    error_body = response.json() if response.content else None
                    error_msg = (
                        error_body.get("error", {}).get("message", str(error_body))
                        if error_body
                        else "Client error"
                    )
                    claude_logger.api_call_error(
                        self._model,
                        duration_ms,
                        response.status_code,
                        error_msg,
                        "ClientError",
                        retry_attempt=attempt,
                        request_id=request_id,
                    )
                    return CompletionResult(
                        success=False,
                        error=f"Client error ({response.status_code}): {error_msg}",
                        status_code=response.status_code,
                        request_id=request_id,
                        duration_ms=duration_ms,
                    )

                response_data = response.json()
                total_duration_ms = (time.monotonic() - start_time) * 1000

                content = response_data.get("content", [])
                text = content[0].get("text", "") if content else ""
                stop_reason = response_data.get("stop_reason")
                usage = response_data.get("usage", {})
                input_tokens = usage.get("input_tokens")
                output_tokens = usage.get("output_tokens")

                claude_logger.api_call_success(
                    self._model,
                    duration_ms,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    request_id=request_id,
                )
                claude_logger.response_body(
                    self._model, text, duration_ms, stop_reason=stop_reason
                )
                if input_tokens and output_tokens:
                    claude_logger.token_usage(self._model, input_tokens, output_tokens)

                return CompletionResult(
                    success=True,
                    text=text,
                    stop_reason=stop_reason,
                    input_tokens=input_tokens,
                    output_tokens=output_tokens,
                    request_id=request_id,
                    duration_ms=total_duration_ms,
                )

            except httpx.TimeoutException:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                claude_logger.timeout(self._model, self._timeout)
                claude_logger.api_call_error(
                    self._model,
                    duration_ms,
                    None,
                    "Request timed out",
                    "TimeoutError",
                    retry_attempt=attempt,
                    request_id=request_id,
                )
                last_error = f"Request timed out after {self._timeout}s"
                last_status = None
                timed_out = True

            except httpx.RequestError as e:
                duration_ms = (time.monotonic() - attempt_start) * 1000
                claude_logger.api_call_error(
                    self._model,
                    duration_ms,
                    None,
                    str(e),
                    type(e).__name__,
                    retry_attempt=attempt,
                    request_id=request_id,
                )
                last_error = f"Request failed: {e}"
                last_status = None
                timed_out = False

            if attempt < self._max_retries - 1:
                delay = self._backoff_delay(attempt)
                logger.warning(
                    f"Claude request attempt {attempt + 1} failed, "
                    f"retrying in {delay}s",
                    extra={
                        "attempt": attempt + 1,
                        "max_retries": self._max_retries,
                        "delay_seconds": delay,
                        "error": last_error,
                    },
                )
                await asyncio.sleep(delay)

        return CompletionResult(
            success=False,
            error=last_error or "Request failed after all retries",
            status_code=last_status,
            request_id=request_id,
            duration_ms=(time.monotonic() - start_time) * 1000,
            timed_out=timed_out,
        )
