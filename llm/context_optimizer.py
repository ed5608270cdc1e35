"""
Context/Prompt Optimizer for the Lead Qualification Engine.

Builds the smallest budget-compliant payload for a conversation:
- Re-uses cached payloads when the current history extends a cached prefix
- Summarizes older turns once when the token budget is exceeded
- Trims the summary and recent tail so the result always fits
"""

import asyncio
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, Sequence, runtime_checkable

from core.metrics import record_cache, record_summarization
from .client import LLMClient, USER_ROLE, normalize_role
from .conversation_cache import ConversationCache
from .generation_config import CallKind, create_generation_config
from .prompt_templates import PromptTemplates
from .token_estimator import HeuristicTokenEstimator, TokenEstimator

logger = logging.getLogger(__name__)

# Role/formatting overhead added per payload turn
MESSAGE_OVERHEAD_TOKENS = 4

# Smallest budget that still fits the system turn
MIN_TOKEN_BUDGET = MESSAGE_OVERHEAD_TOKENS


@dataclass
class OptimizedPayload:
    """Result of one optimize() call."""
    payload: List[Dict[str, str]]
    estimated_tokens: int
    used_cache: bool = False
    summary: Optional[str] = None

    def to_dict(self) -> Dict:
        return {
            "payload": self.payload,
            "estimated_tokens": self.estimated_tokens,
            "used_cache": self.used_cache,
            "summary": self.summary,
        }


@runtime_checkable
class Summarizer(Protocol):
    """Collapses a list of turns into one short text."""

    async def summarize(self, turns: List[Dict[str, str]]) -> str:
        ...


def _transcript(turns: Sequence[Dict[str, str]]) -> str:
    lines = []
    for turn in turns:
        speaker = "Assistant" if turn["role"] == "model" else "User"
        lines.append(f"{speaker}: {turn['content']}")
    return "\n".join(lines)


class LLMSummarizer:
    """Summarizes older turns with one analysis-kind LLM call."""

    def __init__(self, llm: LLMClient, max_words: int = 150):
        self.llm = llm
        self.max_words = max_words
        self.config = create_generation_config(CallKind.ANALYSIS)

    async def summarize(self, turns: List[Dict[str, str]]) -> str:
        prompt = PromptTemplates.build_summarization_prompt(
            _transcript(turns), max_words=self.max_words
        )
        text = await self.llm.generate([{"role": USER_ROLE, "content": prompt}], self.config)
        return text.strip()


class ExtractiveSummarizer:
    """
    Deterministic summarizer used when no LLM is configured.

    Keeps the first sentence of every user turn, in order.
    """

    _SENTENCE_END = re.compile(r"(?<=[.!?])\s+")

    def __init__(self, max_chars_per_turn: int = 160, max_chars: int = 800):
        self.max_chars_per_turn = max_chars_per_turn
        self.max_chars = max_chars

    async def summarize(self, turns: List[Dict[str, str]]) -> str:
        points = []
        for turn in turns:
            if turn["role"] == "model":
                continue
            text = " ".join(turn["content"].split())
            if not text:
                continue
            sentence = self._SENTENCE_END.split(text, maxsplit=1)[0]
            points.append(sentence[: self.max_chars_per_turn])

        assistant_turns = sum(1 for t in turns if t["role"] == "model")
        summary = f"Visitor said: {'; '.join(points)}" if points else "Visitor said nothing notable"
        summary += f" ({assistant_turns} assistant replies omitted)."
        return summary[: self.max_chars]


class ContextOptimizer:
    """
    Produces budget-compliant LLM payloads for a session.

    Payload turns are {"role": "user" | "model", "content": str}; the
    first turn always carries the system prompt.
    """

    def __init__(
        self,
        cache: ConversationCache,
        estimator: Optional[TokenEstimator] = None,
        summarizer: Optional[Summarizer] = None,
        token_budget: int = 8000,
        tail_size: int = 4,
        cache_min_messages: int = 5,
        summarization_timeout: float = 15.0,
    ):
        """
        Initialize the optimizer.

        Args:
            cache: Conversation cache shared for the process lifetime
            estimator: Token estimator (character heuristic by default)
            summarizer: Summarizer for older turns (extractive by default)
            token_budget: Default token budget per payload
            tail_size: Recent turns kept verbatim when summarizing
            cache_min_messages: Histories this short are never served from cache
            summarization_timeout: Seconds before summarization is abandoned
        """
        self.cache = cache
        self.estimator = estimator or HeuristicTokenEstimator()
        self.summarizer = summarizer or ExtractiveSummarizer()
        self.token_budget = token_budget
        self.tail_size = tail_size
        self.cache_min_messages = cache_min_messages
        self.summarization_timeout = summarization_timeout

    # ── Hashing ───────────────────────────────────────────────────────

    @staticmethod
    def prefix_hashes(history: Sequence[Dict[str, str]], system_prompt: str) -> List[str]:
        """
        Rolling SHA-256 over system prompt and turns.

        Returns a list where element i identifies the first i turns.
        """
        current = hashlib.sha256(system_prompt.encode("utf-8")).hexdigest()
        hashes = [current]
        for turn in history:
            material = f"{current}\x00{turn['role']}\x00{turn['content']}"
            current = hashlib.sha256(material.encode("utf-8")).hexdigest()
            hashes.append(current)
        return hashes

    # ── Token accounting ──────────────────────────────────────────────

    def turn_tokens(self, turn: Dict[str, str]) -> int:
        return self.estimator.estimate(turn["content"]) + MESSAGE_OVERHEAD_TOKENS

    def payload_tokens(self, payload: Sequence[Dict[str, str]]) -> int:
        return sum(self.turn_tokens(turn) for turn in payload)

    def _truncate(self, text: str, max_tokens: int) -> str:
        """Longest prefix of text that fits max_tokens (estimator is monotonic)."""
        if max_tokens <= 0:
            return ""
        if self.estimator.estimate(text) <= max_tokens:
            return text
        low, high = 0, len(text)
        while low < high:
            mid = (low + high + 1) // 2
            if self.estimator.estimate(text[:mid]) <= max_tokens:
                low = mid
            else:
                high = mid - 1
        return text[:low]

    # ── Optimize ──────────────────────────────────────────────────────

    async def optimize(
        self,
        history: Sequence[Dict[str, str]],
        system_prompt: str,
        session_id: str,
        token_budget: Optional[int] = None,
    ) -> OptimizedPayload:
        """
        Build the payload for the next LLM call.

        Args:
            history: Conversation turns ({"role", "content"}), oldest first
            system_prompt: System prompt for this call
            session_id: Session the history belongs to
            token_budget: Override of the default budget

        Returns:
            OptimizedPayload

        Raises:
            ValueError: budget below MIN_TOKEN_BUDGET
        """
        budget = self.token_budget if token_budget is None else token_budget
        if budget < MIN_TOKEN_BUDGET:
            raise ValueError(f"token budget {budget} is below the minimum of {MIN_TOKEN_BUDGET}")
        turns = [
            {"role": normalize_role(turn["role"]), "content": turn["content"]}
            for turn in history
        ]
        hashes = self.prefix_hashes(history, system_prompt)
        full_hash = hashes[-1]

        if len(turns) > self.cache_min_messages:
            cached = self._from_cache(session_id, hashes, turns, budget)
            if cached is not None:
                return cached
        else:
            logger.debug(f"Optimizer: history too short for cache ({len(turns)} turns)")

        system_turn = {"role": USER_ROLE, "content": system_prompt}
        payload = [system_turn] + turns
        tokens = self.payload_tokens(payload)

        if tokens <= budget:
            self.cache.put(session_id, full_hash, len(turns), payload, tokens)
            return OptimizedPayload(payload=payload, estimated_tokens=tokens)

        logger.info(
            f"Optimizer: session {session_id} over budget ({tokens} > {budget}), summarizing"
        )
        payload, summary = await self._summarize_to_budget(system_prompt, turns, budget)
        tokens = self.payload_tokens(payload)
        self.cache.put(session_id, full_hash, len(turns), payload, tokens, summary=summary)

        return OptimizedPayload(payload=payload, estimated_tokens=tokens, summary=summary)

    def _from_cache(
        self,
        session_id: str,
        hashes: List[str],
        turns: List[Dict[str, str]],
        budget: int,
    ) -> Optional[OptimizedPayload]:
        entry = self.cache.find_longest_prefix(session_id, hashes)
        if entry is None:
            record_cache("conversation", False)
            return None

        new_turns = turns[entry.history_length:]
        tokens = entry.estimated_tokens + self.payload_tokens(new_turns)
        if tokens > budget:
            logger.debug(f"Optimizer: cached prefix for {session_id} no longer fits budget")
            record_cache("conversation", False)
            return None

        record_cache("conversation", True)
        payload = [dict(turn) for turn in entry.payload] + new_turns
        if new_turns:
            self.cache.put(
                session_id, hashes[-1], len(turns), payload, tokens, summary=entry.summary
            )

        return OptimizedPayload(
            payload=payload,
            estimated_tokens=tokens,
            used_cache=True,
            summary=entry.summary,
        )

    async def _summarize_to_budget(
        self,
        system_prompt: str,
        turns: List[Dict[str, str]],
        budget: int,
    ):
        tail = turns[-self.tail_size:] if self.tail_size > 0 else []
        older = turns[: len(turns) - len(tail)]

        summary = None
        if older:
            summary = await self._summarize(older)

        system_budget = budget - MESSAGE_OVERHEAD_TOKENS
        system_turn = {"role": USER_ROLE, "content": self._truncate(system_prompt, system_budget)}
        available = budget - self.turn_tokens(system_turn)

        # Drop the oldest tail turns first, then cut the newest one down
        tail = [dict(turn) for turn in tail]
        while len(tail) > 1 and self.payload_tokens(tail) > available:
            tail.pop(0)
        if tail and self.payload_tokens(tail) > available:
            content = self._truncate(tail[0]["content"], available - MESSAGE_OVERHEAD_TOKENS)
            tail = [{"role": tail[0]["role"], "content": content}] if content else []
        available -= self.payload_tokens(tail)

        payload = [system_turn]
        if summary:
            summary_text = f"{PromptTemplates.SUMMARY_PREFIX} {summary}"
            summary_text = self._truncate(summary_text, available - MESSAGE_OVERHEAD_TOKENS)
            if len(summary_text) > len(PromptTemplates.SUMMARY_PREFIX) + 1:
                payload.append({"role": USER_ROLE, "content": summary_text})
            else:
                summary = None

        return payload + tail, summary

    async def _summarize(self, older: List[Dict[str, str]]) -> Optional[str]:
        try:
            summary = await asyncio.wait_for(
                self.summarizer.summarize(older), timeout=self.summarization_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(f"Summarization timed out after {self.summarization_timeout}s")
            record_summarization("timeout")
            return None
        except Exception as e:
            logger.warning(f"Summarization failed, keeping recent turns only: {e}")
            record_summarization("failed")
            return None

        if not summary:
            record_summarization("empty")
            return None

        record_summarization("ok")
        return summary

    def get_stats(self) -> Dict:
        stats = self.cache.get_stats()
        stats["token_budget"] = self.token_budget
        stats["tail_size"] = self.tail_size
        return stats
