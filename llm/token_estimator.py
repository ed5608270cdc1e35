"""
Token Estimator for the Lead Qualification Engine.

Provides a language-aware character heuristic (default) and exact
counting via tiktoken, both behind the same `TokenEstimator` protocol
so the optimizer never depends on a particular tokenizer.
"""

import logging
import math
import re
from typing import Protocol, runtime_checkable

import tiktoken

logger = logging.getLogger(__name__)

# Anything outside Latin-1 tends to tokenize much denser than English.
_NON_LATIN = re.compile(r"[^\x00-\xff]")

LATIN_CHARS_PER_TOKEN = 4
NON_LATIN_CHARS_PER_TOKEN = 2


@runtime_checkable
class TokenEstimator(Protocol):
    """Protocol for token counting strategies."""

    def estimate(self, text: str) -> int:
        ...


class HeuristicTokenEstimator:
    """
    Character-count heuristic.

    Latin text ~4 chars/token, other scripts ~2 chars/token, rounded up.
    Monotonic in input length: appending characters never lowers the
    estimate.
    """

    def estimate(self, text: str) -> int:
        if not text:
            return 0

        non_latin = len(_NON_LATIN.findall(text))
        latin = len(text) - non_latin

        return math.ceil(latin / LATIN_CHARS_PER_TOKEN + non_latin / NON_LATIN_CHARS_PER_TOKEN)


class TiktokenEstimator:
    """Exact counting for OpenAI models (cl100k_base)."""

    def __init__(self, encoding_name: str = "cl100k_base"):
        self._encoding = tiktoken.get_encoding(encoding_name)
        logger.info(f"TokenEstimator: using tiktoken ({encoding_name})")

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return len(self._encoding.encode(text))


def create_token_estimator(strategy: str = "heuristic") -> TokenEstimator:
    """
    Build an estimator by name.

    Args:
        strategy: "heuristic" (default) or "tiktoken"
    """
    if strategy.lower() == "tiktoken":
        return TiktokenEstimator()
    return HeuristicTokenEstimator()
