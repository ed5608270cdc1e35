"""
LLM Module for the Lead Qualification Engine.

This module handles:
- LLM provider abstraction (Bedrock, OpenAI)
- Token estimation and per-call-kind generation config
- Conversation caching and context optimization
- Live call coalescing
"""

from .client import LLMClient, create_llm_client, normalize_role
from .call_guard import CallCoalescer, GuardDecision, hash_prompt
from .context_optimizer import (
    ContextOptimizer,
    ExtractiveSummarizer,
    LLMSummarizer,
    OptimizedPayload,
)
from .conversation_cache import CachedPrompt, ConversationCache
from .generation_config import CallKind, GenerationConfig, create_generation_config
from .prompt_templates import PromptTemplates
from .token_estimator import HeuristicTokenEstimator, TokenEstimator, create_token_estimator

__all__ = [
    "LLMClient",
    "create_llm_client",
    "normalize_role",
    "CallCoalescer",
    "GuardDecision",
    "hash_prompt",
    "ContextOptimizer",
    "ExtractiveSummarizer",
    "LLMSummarizer",
    "OptimizedPayload",
    "CachedPrompt",
    "ConversationCache",
    "CallKind",
    "GenerationConfig",
    "create_generation_config",
    "PromptTemplates",
    "HeuristicTokenEstimator",
    "TokenEstimator",
    "create_token_estimator",
]
