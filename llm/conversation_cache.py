"""
Conversation Cache for the Lead Qualification Engine.

TTL store of assembled prompt payloads keyed by (session_id, content_hash).
Expired entries are dropped lazily on read; `clear_expired` sweeps them
explicitly. Entries of one session are never touched by operations on
another session.
"""

import json
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)


@dataclass
class CachedPrompt:
    """An assembled payload for one (session, history prefix)."""
    session_id: str
    content_hash: str
    history_length: int
    payload: List[Dict[str, str]]
    estimated_tokens: int
    expires_at: float
    summary: Optional[str] = None
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def size_bytes(self) -> int:
        return len(json.dumps(self.payload)) + len(self.summary or "")


class ConversationCache:
    """
    In-memory TTL cache of prompt payloads.

    Constructed once at startup and injected into the optimizer.
    """

    def __init__(
        self,
        ttl_seconds: int = 1800,
        max_entries_per_session: int = 20,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self.max_entries_per_session = max_entries_per_session
        self._clock = clock
        self._entries: Dict[str, Dict[str, CachedPrompt]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, session_id: str, content_hash: str) -> Optional[CachedPrompt]:
        """Return the entry if present and unexpired."""
        now = self._clock()
        with self._lock:
            session_entries = self._entries.get(session_id)
            if not session_entries:
                return None
            entry = session_entries.get(content_hash)
            if entry is None:
                return None
            if entry.is_expired(now):
                del session_entries[content_hash]
                if not session_entries:
                    del self._entries[session_id]
                return None
            return entry

    def find_longest_prefix(
        self,
        session_id: str,
        prefix_hashes: Sequence[str],
    ) -> Optional[CachedPrompt]:
        """
        Find the cached entry covering the longest prefix of a history.

        Args:
            session_id: Session the history belongs to
            prefix_hashes: prefix_hashes[i] is the hash of the first i turns

        Returns:
            The matching entry, or None on a miss
        """
        for length in range(len(prefix_hashes) - 1, 0, -1):
            entry = self.get(session_id, prefix_hashes[length])
            if entry is not None and entry.history_length == length:
                self.hits += 1
                return entry
        self.misses += 1
        return None

    def put(
        self,
        session_id: str,
        content_hash: str,
        history_length: int,
        payload: List[Dict[str, str]],
        estimated_tokens: int,
        summary: Optional[str] = None,
    ) -> CachedPrompt:
        """Write or refresh one entry."""
        now = self._clock()
        entry = CachedPrompt(
            session_id=session_id,
            content_hash=content_hash,
            history_length=history_length,
            payload=[dict(turn) for turn in payload],
            estimated_tokens=estimated_tokens,
            expires_at=now + self.ttl_seconds,
            summary=summary,
            created_at=now,
        )
        with self._lock:
            session_entries = self._entries.setdefault(session_id, {})
            session_entries.pop(content_hash, None)
            session_entries[content_hash] = entry

            # Evict this session's oldest entries only
            while len(session_entries) > self.max_entries_per_session:
                oldest = next(iter(session_entries))
                del session_entries[oldest]

        return entry

    def clear_expired(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self._clock()
        removed = 0
        with self._lock:
            for session_id in list(self._entries):
                session_entries = self._entries[session_id]
                for content_hash in list(session_entries):
                    if session_entries[content_hash].is_expired(now):
                        del session_entries[content_hash]
                        removed += 1
                if not session_entries:
                    del self._entries[session_id]
        if removed:
            logger.info(f"Conversation cache: cleared {removed} expired entries")
        return removed

    def clear_session(self, session_id: str):
        with self._lock:
            self._entries.pop(session_id, None)

    def entry_count(self, session_id: Optional[str] = None) -> int:
        with self._lock:
            if session_id is not None:
                return len(self._entries.get(session_id, {}))
            return sum(len(v) for v in self._entries.values())

    def get_stats(self) -> Dict:
        """Return cache statistics."""
        with self._lock:
            entries = [e for v in self._entries.values() for e in v.values()]
            sessions = len(self._entries)
        total = self.hits + self.misses
        return {
            "conversation_entries": len(entries),
            "sessions": sessions,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate_percent": round(self.hits / total * 100, 2) if total else 0.0,
            "total_memory_kb": round(sum(e.size_bytes() for e in entries) / 1024, 2),
        }
