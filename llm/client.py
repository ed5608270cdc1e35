"""
LLM client boundary for the Lead Qualification Engine.

The engine only talks to an LLM through `LLMClient`. Payloads are the
optimizer's output: a list of {"role": "user" | "model", "content": str}
turns whose first turn carries the system prompt.
"""

import logging
from typing import Dict, Iterator, List, Optional, Protocol, runtime_checkable

from .generation_config import GenerationConfig

logger = logging.getLogger(__name__)

MODEL_ROLE = "model"
USER_ROLE = "user"


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for LLM backends."""

    async def generate(self, payload: List[Dict[str, str]], config: GenerationConfig) -> str:
        ...

    def generate_stream(
        self, payload: List[Dict[str, str]], config: GenerationConfig
    ) -> Iterator[str]:
        ...


def normalize_role(role: str) -> str:
    """`assistant` and `model` map to the model role, anything else to the user role."""
    return MODEL_ROLE if role in ("assistant", MODEL_ROLE) else USER_ROLE


def to_chat_messages(payload: List[Dict[str, str]]) -> List[Dict[str, str]]:
    """Convert a payload into provider chat messages (user/assistant)."""
    return [
        {
            "role": "assistant" if turn["role"] == MODEL_ROLE else "user",
            "content": turn["content"],
        }
        for turn in payload
    ]


def create_llm_client(settings) -> Optional[LLMClient]:
    """
    Build the configured LLM client.

    Returns None when the provider is "none"; the engine then falls back
    to deterministic templates and extractive summaries.
    """
    if settings.is_openai:
        from .providers.openai_provider import OpenAIProvider
        return OpenAIProvider(api_key=settings.openai_api_key, model_id=settings.openai_llm_model)
    if settings.is_bedrock:
        from .providers.bedrock import BedrockProvider
        return BedrockProvider(model_id=settings.bedrock_llm_model_id, region=settings.aws_region)

    logger.warning(f"LLM provider '{settings.llm_provider}' disabled, using templates")
    return None
