"""
OpenAI LLM Provider.
"""

import logging
import time
from typing import Dict, Iterator, List, Optional

from openai import AsyncOpenAI, OpenAI, OpenAIError

from core.errors import UpstreamUnavailable
from core.metrics import record_llm_latency
from ..client import to_chat_messages
from ..generation_config import GenerationConfig

logger = logging.getLogger(__name__)


class OpenAIProvider:
    """
    OpenAI LLM provider.

    Supports GPT-4 family chat models.
    """

    DEFAULT_MODEL = "gpt-4o-mini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model_id: str = DEFAULT_MODEL,
    ):
        """
        Initialize OpenAI provider.

        Args:
            api_key: OpenAI API key
            model_id: Model ID
        """
        self._client = OpenAI(api_key=api_key) if api_key else OpenAI()
        self._async_client = AsyncOpenAI(api_key=api_key) if api_key else AsyncOpenAI()
        self.model_id = model_id

        logger.info(f"OpenAI provider initialized: {model_id}")

    def _request(self, payload: List[Dict[str, str]], config: GenerationConfig) -> Dict:
        return {
            "model": self.model_id,
            "messages": to_chat_messages(payload),
            "max_tokens": config.max_output_tokens,
            "temperature": config.temperature,
            "top_p": config.top_p,
        }

    async def generate(self, payload: List[Dict[str, str]], config: GenerationConfig) -> str:
        """
        Generate a response for an optimized payload.

        Args:
            payload: Optimizer payload (system turn first)
            config: Generation config for the call kind

        Returns:
            Generated response
        """
        start = time.time()
        try:
            response = await self._async_client.chat.completions.create(**self._request(payload, config))
        except OpenAIError as e:
            logger.error(f"OpenAI generation failed: {e}")
            raise UpstreamUnavailable(f"OpenAI generation failed: {e}") from e
        record_llm_latency("openai", time.time() - start)
        return (response.choices[0].message.content or "").strip()

    def generate_stream(
        self, payload: List[Dict[str, str]], config: GenerationConfig
    ) -> Iterator[str]:
        """Yield response text chunks as they arrive."""
        try:
            stream = self._client.chat.completions.create(
                stream=True, **self._request(payload, config)
            )
            for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except OpenAIError as e:
            logger.error(f"OpenAI streaming failed: {e}")
            raise UpstreamUnavailable(f"OpenAI streaming failed: {e}") from e
