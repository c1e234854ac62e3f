"""Adapter for the Gemini text-generation API.

Talks to Gemini's OpenAI-compatible endpoint through the official `openai`
SDK. This class makes exactly one request per call; retry policy lives in
ResilientClient, so the SDK's own retries are disabled.
"""

import logging
import os
from typing import Any, Dict, Optional

from openai import AsyncOpenAI

from atsgate.domain.models.analysis import RetryableRequest

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta/openai/"
DEFAULT_MODEL = "gemini-2.0-flash"
# Low temperature for consistent, near-deterministic output
DEFAULT_TEMPERATURE = 0.3

class GeminiClient:
    """Issues single generation requests and returns the generated text."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        client: Optional[AsyncOpenAI] = None,
    ):
        """Initializes the Gemini client.

        Args:
            api_key: Gemini API key. Reads from GEMINI_API_KEY env var if None.
            model: The model to call.
            base_url: OpenAI-compatible endpoint root.
            temperature: Sampling temperature hint sent with every request.
            client: Pre-built AsyncOpenAI instance (tests inject a mock here).
        """
        self.model = model or DEFAULT_MODEL
        self.temperature = temperature
        if client is not None:
            self.client = client
        else:
            effective_api_key = api_key or os.getenv("GEMINI_API_KEY")
            if not effective_api_key:
                raise ValueError("Gemini API key not provided and not found in environment variables.")
            self.client = AsyncOpenAI(
                api_key=effective_api_key,
                base_url=base_url or DEFAULT_BASE_URL,
                max_retries=0,
            )
        logger.info(f"GeminiClient initialized for model: {self.model}")

    def build_payload(
        self, request: RetryableRequest, response_shape: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Builds chat-completion arguments for one attempt."""
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_text},
            ],
            "response_format": {
                "type": "json_schema",
                "json_schema": {"name": request.name, "schema": response_shape},
            },
            "temperature": self.temperature,
        }

    async def generate(self, payload: Dict[str, Any], timeout: Optional[float] = None) -> Optional[str]:
        """Sends one request and returns the generated text, or None if there is none.

        SDK exceptions (RateLimitError, APIStatusError, APIConnectionError,
        APITimeoutError) propagate unchanged for the caller to classify.
        """
        response = await self.client.chat.completions.create(**payload, timeout=timeout)
        try:
            return response.choices[0].message.content
        except (AttributeError, IndexError, TypeError):
            logger.debug(f"Response carried no generated text: {response!r}")
            return None
