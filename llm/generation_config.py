"""
Per-call-kind generation settings.

Each kind of LLM call (chat, analysis, document, live, research) has
its own output limit, temperature and cache hint.
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional, Union


class CallKind(Enum):
    """Kinds of outbound LLM calls."""
    CHAT = "chat"
    ANALYSIS = "analysis"
    DOCUMENT = "document"
    LIVE = "live"
    RESEARCH = "research"


KIND_ALIASES = {
    "text_generation": CallKind.CHAT,
    "document_analysis": CallKind.DOCUMENT,
}


@dataclass(frozen=True)
class CacheConfig:
    """Cache hint passed to the LLM client."""
    enabled: bool = True
    ttl_seconds: int = 1800


@dataclass(frozen=True)
class GenerationConfig:
    """Settings for one LLM call."""
    max_output_tokens: int
    temperature: float
    top_p: float = 0.95
    top_k: Optional[int] = None
    response_mime_type: str = "text/plain"
    cache_config: CacheConfig = field(default_factory=CacheConfig)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "max_output_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "top_k": self.top_k,
            "response_mime_type": self.response_mime_type,
            "cache_config": {
                "enabled": self.cache_config.enabled,
                "ttl_seconds": self.cache_config.ttl_seconds,
            },
        }


GENERATION_DEFAULTS: Dict[CallKind, GenerationConfig] = {
    CallKind.CHAT: GenerationConfig(
        max_output_tokens=2048, temperature=0.7, cache_config=CacheConfig(ttl_seconds=1800),
    ),
    CallKind.ANALYSIS: GenerationConfig(
        max_output_tokens=1024, temperature=0.3, cache_config=CacheConfig(ttl_seconds=3600),
    ),
    CallKind.DOCUMENT: GenerationConfig(
        max_output_tokens=1536, temperature=0.4, cache_config=CacheConfig(ttl_seconds=7200),
    ),
    CallKind.LIVE: GenerationConfig(
        max_output_tokens=512, temperature=0.6, cache_config=CacheConfig(ttl_seconds=300),
    ),
    CallKind.RESEARCH: GenerationConfig(
        max_output_tokens=3072, temperature=0.5, response_mime_type="application/json",
        cache_config=CacheConfig(ttl_seconds=3600),
    ),
}


def resolve_call_kind(kind: Union[str, CallKind]) -> CallKind:
    """Map a kind name (or alias) to a CallKind."""
    if isinstance(kind, CallKind):
        return kind
    key = kind.lower().strip()
    if key in KIND_ALIASES:
        return KIND_ALIASES[key]
    try:
        return CallKind(key)
    except ValueError:
        raise ValueError(f"Unknown call kind: {kind}")


def create_generation_config(
    kind: Union[str, CallKind],
    overrides: Optional[Dict[str, Any]] = None,
) -> GenerationConfig:
    """
    Build the generation config for a call kind.

    Args:
        kind: Call kind or alias (e.g. "chat", "text_generation")
        overrides: Field overrides such as max_output_tokens, temperature, top_k

    Returns:
        GenerationConfig
    """
    config = GENERATION_DEFAULTS[resolve_call_kind(kind)]
    if not overrides:
        return config

    overrides = dict(overrides)
    cache_override = overrides.pop("cache_config", None)
    if isinstance(cache_override, dict):
        overrides["cache_config"] = replace(config.cache_config, **cache_override)
    elif cache_override is not None:
        overrides["cache_config"] = cache_override

    return replace(config, **overrides)
