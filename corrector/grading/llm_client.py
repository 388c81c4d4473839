"""
LLM Client for OpenAI-compatible endpoints.

Provides an async wrapper around the OpenAI SDK configured with a custom
base URL. Includes retry logic with exponential backoff and maps SDK
failures onto the engine's oracle errors.
"""

import asyncio
import base64
import logging
from typing import Any

from openai import APIConnectionError, APIStatusError, AsyncOpenAI, RateLimitError

from corrector.config import Settings, get_settings
from corrector.errors import MalformedResponse, OracleUnavailable

logger = logging.getLogger(__name__)


def image_content_part(data: bytes, mime_type: str) -> dict[str, Any]:
    """Build a chat content part carrying an inline image."""
    encoded = base64.b64encode(data).decode("ascii")
    return {"type": "image_url", "image_url": {"url": f"data:{mime_type};base64,{encoded}"}}


class LLMClient:
    """
    Client for interacting with an OpenAI-compatible chat completions API.

    Implements retry logic with exponential backoff for rate limits,
    connection failures and server errors.
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            client: Preconfigured SDK client (mainly for tests).
        """
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.oracle_api_key,
            base_url=self._settings.oracle_base_url,
            timeout=self._settings.oracle_timeout_seconds,
        )

        # Retry configuration
        self._max_retries = self._settings.oracle_max_retries
        self._base_delay = 1.0  # seconds
        self._max_delay = 30.0  # seconds

    async def generate(
        self,
        system_prompt: str,
        user_content: str | list[dict[str, Any]],
        temperature: float,
        json_mode: bool = False,
        max_tokens: int = 8192,
    ) -> str:
        """
        Generate a response from the LLM.

        Args:
            system_prompt: System message defining the LLM's role.
            user_content: User message, plain text or a list of content parts.
            temperature: Sampling temperature.
            json_mode: Ask the endpoint for a JSON object response.
            max_tokens: Maximum tokens in response.

        Returns:
            The generated text response.

        Raises:
            OracleUnavailable: If generation fails after all retries.
            MalformedResponse: If the endpoint answers with no content.
        """
        messages: list[dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_content},
        ]
        extra: dict[str, Any] = {}
        if json_mode:
            extra["response_format"] = {"type": "json_object"}

        return await self._call_with_retry(messages, temperature, max_tokens, extra)

    async def _call_with_retry(
        self,
        messages: list[dict[str, Any]],
        temperature: float,
        max_tokens: int,
        extra: dict[str, Any],
    ) -> str:
        """
        Call the API with exponential backoff retry.

        Raises:
            OracleUnavailable: If all retries fail.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.chat.completions.create(
                    model=self._settings.oracle_model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                    **extra,
                )

                if response.choices and response.choices[0].message.content:
                    return response.choices[0].message.content

                raise MalformedResponse("Empty response from LLM")

            except (RateLimitError, APIConnectionError) as e:
                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(attempt, e)
                    continue
                reason = "Rate limit exceeded" if isinstance(e, RateLimitError) else "Connection failed"
                raise OracleUnavailable(
                    f"{reason} after {self._max_retries} retries",
                    cause=e,
                    retryable=True,
                ) from e

            except APIStatusError as e:
                # Don't retry on client errors (4xx except 429)
                if 400 <= e.status_code < 500 and e.status_code != 429:
                    raise OracleUnavailable(
                        f"API error: {e.message}",
                        cause=e,
                        retryable=False,
                    ) from e

                last_error = e
                if attempt < self._max_retries:
                    await self._backoff(attempt, e)
                    continue
                raise OracleUnavailable(
                    f"API error after {self._max_retries} retries: {e.message}",
                    cause=e,
                    retryable=True,
                ) from e

            except MalformedResponse:
                raise

            except Exception as e:
                raise OracleUnavailable(f"Unexpected error: {e}", cause=e, retryable=False) from e

        raise OracleUnavailable(f"Failed after {self._max_retries} retries", cause=last_error)

    async def _backoff(self, attempt: int, error: Exception) -> None:
        delay = self._calculate_delay(attempt)
        logger.warning(
            "LLM call attempt %d/%d failed: %s. Retrying in %.1fs",
            attempt + 1,
            self._max_retries,
            error,
            delay,
        )
        await asyncio.sleep(delay)

    def _calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        delay = self._base_delay * (2**attempt)
        return min(delay, self._max_delay)

    async def health_check(self) -> bool:
        """
        Check if the API is reachable.

        Returns:
            True if API is healthy, False otherwise.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._settings.oracle_model,
                messages=[{"role": "user", "content": "ping"}],
                max_tokens=5,
            )
            return bool(response.choices)
        except Exception as e:
            logger.warning("Health check failed: %s", e)
            return False
