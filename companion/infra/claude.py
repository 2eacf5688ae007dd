"""
Anthropic client for remote anxiety analysis.

One shared AsyncAnthropic connection. Every call is bounded by the remote
timeout, which covers transient-error retries as well.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from anthropic import AsyncAnthropic, APIConnectionError, APIError, APIStatusError, RateLimitError

from companion.config import settings

logger = logging.getLogger(__name__)

RETRY_BACKOFF_SECONDS = 0.5

# Worth another attempt while the bounded wait still has time left
TRANSIENT_ERRORS = (RateLimitError, APIConnectionError)


class ClaudeClientError(Exception):
    """Raised when a Claude API call fails or times out."""

    def __init__(self, message: str, status_code: Optional[int] = None, timed_out: bool = False):
        super().__init__(message)
        self.status_code = status_code
        self.timed_out = timed_out


@dataclass
class ClaudeResponse:
    """Text of the first content block plus usage."""
    content: str
    model: str
    input_tokens: int
    output_tokens: int
    stop_reason: str
    latency_ms: float

    @classmethod
    def from_api(cls, message: Any, model: str, latency_ms: float) -> "ClaudeResponse":
        if not message.content:
            raise ClaudeClientError("Claude API returned no content blocks")
        return cls(
            content=getattr(message.content[0], "text", "") or "",
            model=model,
            input_tokens=message.usage.input_tokens,
            output_tokens=message.usage.output_tokens,
            stop_reason=message.stop_reason,
            latency_ms=latency_ms,
        )


class ClaudeClient:
    """
    Shared wrapper around AsyncAnthropic.

    SDK retries are turned off; transient errors are retried here with
    exponential backoff, inside the same bounded wait as the first attempt.
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        max_retries: Optional[int] = None,
    ):
        """
        Raises:
            ValueError: If neither api_key nor settings provide a key
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._timeout = settings.remote_timeout_seconds if timeout_seconds is None else timeout_seconds
        self._max_retries = settings.remote_max_retries if max_retries is None else max_retries
        self._default_model = settings.claude_analysis_model
        self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0, timeout=self._timeout)

        logger.info(
            f"Claude client ready: model={self._default_model} "
            f"timeout={self._timeout}s retries={self._max_retries}"
        )

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Forget the shared client without closing it (tests)."""
        cls._instance = None

    @classmethod
    async def close_instance(cls) -> None:
        """Close the shared client's HTTP connections and forget it."""
        if cls._instance is not None:
            await cls._instance.close()
        cls._instance = None

    async def generate(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> ClaudeResponse:
        """
        Send one user turn and return the first text block.

        Raises:
            ClaudeClientError: On SDK errors, an empty reply, or when the
                bounded wait expires (``timed_out`` is set)
        """
        request: dict[str, Any] = {
            "model": model or self._default_model,
            "max_tokens": max_tokens or settings.claude_max_tokens,
            "temperature": settings.claude_temperature if temperature is None else temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            request["system"] = system_prompt

        started = time.perf_counter()
        try:
            message = await asyncio.wait_for(self._send_with_backoff(request), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise ClaudeClientError(f"No reply from Claude within {self._timeout}s", timed_out=True) from e
        except APIStatusError as e:
            raise ClaudeClientError(
                f"Claude API returned status {e.status_code}", status_code=e.status_code
            ) from e
        except APIError as e:
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        return ClaudeResponse.from_api(message, request["model"], elapsed_ms)

    async def _send_with_backoff(self, request: dict[str, Any]) -> Any:
        attempt = 0
        while True:
            try:
                return await self._client.messages.create(**request)
            except TRANSIENT_ERRORS as e:
                if attempt >= self._max_retries:
                    raise
                delay = RETRY_BACKOFF_SECONDS * 2 ** attempt
                attempt += 1
                logger.warning(
                    f"{type(e).__name__} from Claude, attempt {attempt}/{self._max_retries} "
                    f"retrying in {delay}s"
                )
                await asyncio.sleep(delay)

    async def close(self) -> None:
        await self._client.close()


async def get_claude_client() -> ClaudeClient:
    """Shared client; raises ValueError when no API key is configured."""
    return ClaudeClient.get_instance()
