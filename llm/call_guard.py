"""
Call Coalescer for live (low-latency) generation calls.

Suppresses identical calls from the same caller inside a short window.
It only ever sees (caller_key, prompt_hash); payload semantics are the
caller's concern.
"""

import hashlib
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from core.metrics import record_guard_rejection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a guard check."""
    allowed: bool
    retry_after_ms: int = 0


@dataclass
class GuardEntry:
    last_call_at: float
    min_interval_ms: int


def hash_prompt(prompt: str) -> str:
    """Stable hash of a prompt, whitespace-normalized."""
    normalized = " ".join(prompt.split()).lower()
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()[:16]


class CallCoalescer:
    """Per-(caller, prompt) minimum-interval gate."""

    def __init__(
        self,
        default_min_interval_ms: int = 5000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.default_min_interval_ms = default_min_interval_ms
        self._clock = clock
        self._entries: Dict[Tuple[str, str], GuardEntry] = {}
        self._lock = threading.Lock()

    def guard(
        self,
        caller_key: str,
        prompt_hash: str,
        min_interval_ms: Optional[int] = None,
    ) -> GuardDecision:
        """
        Allow or reject a call.

        Args:
            caller_key: Caller identity (session id, client id)
            prompt_hash: Hash of the prompt, see hash_prompt()
            min_interval_ms: Window size; defaults to the configured interval

        Returns:
            GuardDecision with retry_after_ms > 0 on rejection
        """
        interval = self.default_min_interval_ms if min_interval_ms is None else min_interval_ms
        now = self._clock()
        key = (caller_key, prompt_hash)

        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                elapsed_ms = (now - entry.last_call_at) * 1000
                if elapsed_ms < interval:
                    retry_after = max(1, int(interval - elapsed_ms))
                    record_guard_rejection()
                    logger.info(f"Duplicate call from {caller_key} rejected, retry in {retry_after}ms")
                    return GuardDecision(allowed=False, retry_after_ms=retry_after)

            self._entries[key] = GuardEntry(last_call_at=now, min_interval_ms=interval)

        return GuardDecision(allowed=True)

    def prune(self) -> int:
        """Drop entries whose window has elapsed. Returns the number removed."""
        now = self._clock()
        with self._lock:
            stale = [
                key for key, entry in self._entries.items()
                if (now - entry.last_call_at) * 1000 >= entry.min_interval_ms
            ]
            for key in stale:
                del self._entries[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)
