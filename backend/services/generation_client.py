"""Generation client for the Gemini generateContent API."""
import time
import logging
from typing import Any, Optional
import httpx

from services.errors import GenerationUnavailable
from config import (
    GEMINI_API_KEY,
    GEMINI_API_URL,
    GEMINI_MODEL,
    GENERATION_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

STAGE = "generating"

# Returned instead of failing when the backend produces no usable text
NO_ANSWER = "No answer generated."


class GenerationClient:
    """Client for producing answers from an assembled prompt."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = GEMINI_MODEL,
        base_url: str = GEMINI_API_URL,
        timeout: float = GENERATION_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the generation client.

        Args:
            api_key: Gemini API key (defaults to GEMINI_API_KEY from environment)
            model: Model name, e.g. gemini-2.0-flash
            base_url: API root up to the version segment
            timeout: Request timeout in seconds
            http_client: Optional shared AsyncClient; one is created if omitted
        """
        self.api_key = api_key or GEMINI_API_KEY
        if not self.api_key:
            raise ValueError("GEMINI_API_KEY must be provided or set in environment")

        self.model = model
        self.api_url = f"{base_url.rstrip('/')}/models/{model}:generateContent"
        self.timeout = timeout
        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

        logger.info(f"GenerationClient initialized for model: {model}")

    async def generate(self, prompt: str) -> str:
        """
        Generate an answer for the prompt.

        Args:
            prompt: Complete prompt with context and query

        Returns:
            Text of the first candidate, or NO_ANSWER when the backend
            returned no candidates or empty text

        Raises:
            GenerationUnavailable: On timeout, transport error, non-2xx
                status or a malformed payload
        """
        start_time = time.time()
        try:
            response = await self.http_client.post(
                self.api_url,
                params={"key": self.api_key},
                json={"contents": [{"parts": [{"text": prompt}]}]},
                headers={"Content-Type": "application/json"},
                timeout=self.timeout
            )
        except httpx.TimeoutException as e:
            logger.error(f"Generation timed out: model={self.model}, timeout={self.timeout}s")
            raise GenerationUnavailable(
                "Request timed out. Please try again.",
                stage=STAGE,
                details={"model": self.model, "error_type": type(e).__name__}
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Generation network error: model={self.model}, error={type(e).__name__}")
            raise GenerationUnavailable(
                "Generation service is unreachable",
                stage=STAGE,
                details={"model": self.model, "error_type": type(e).__name__}
            ) from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.is_success:
            logger.error(
                f"Generation failed: model={self.model}, "
                f"status={response.status_code}, latency={latency_ms}ms"
            )
            raise GenerationUnavailable(
                f"Generation service returned status {response.status_code}",
                stage=STAGE,
                details={"model": self.model, "status_code": response.status_code}
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise GenerationUnavailable(
                "Generation service returned a non-JSON body",
                stage=STAGE,
                details={"model": self.model}
            ) from e

        if not isinstance(payload, dict):
            raise GenerationUnavailable(
                "Generation service returned an unexpected payload",
                stage=STAGE,
                details={"model": self.model}
            )

        text = self.extract_text(payload)
        if text is None:
            logger.warning(f"No answer generated: model={self.model}, latency={latency_ms}ms")
            return NO_ANSWER

        logger.info(
            f"Generated response: model={self.model}, "
            f"answer_chars={len(text)}, latency={latency_ms}ms"
        )
        return text

    @staticmethod
    def extract_text(payload: Any) -> Optional[str]:
        """Return candidates[0].content.parts[0].text, or None if absent or empty."""
        try:
            text = payload["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        if not isinstance(text, str) or not text:
            return None
        return text

    async def close(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_client:
            await self.http_client.aclose()
