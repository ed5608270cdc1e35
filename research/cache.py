"""
Research cache: one ResearchRecord per identity key, 24h TTL by default.
"""

import logging
import threading
import time
from typing import Callable, Dict, Optional

from .models import ResearchRecord, ResearchResult

logger = logging.getLogger(__name__)


def identity_key(email: str, name: Optional[str] = None, company_url: Optional[str] = None) -> str:
    """email|name|company_url, lower-cased."""
    parts = [email or "", name or "", company_url or ""]
    return "|".join(p.strip().lower() for p in parts)


class ResearchCache:
    """In-memory TTL cache of research results, keyed by identity."""

    def __init__(
        self,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: Dict[str, ResearchRecord] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def get(self, key: str) -> Optional[ResearchRecord]:
        now = self._clock()
        with self._lock:
            record = self._records.get(key)
            if record is not None and record.is_expired(now):
                del self._records[key]
                record = None
            if record is None:
                self.misses += 1
            else:
                self.hits += 1
            return record

    def put(self, key: str, result: ResearchResult) -> ResearchRecord:
        """Store a fresh record, replacing any previous one."""
        now = self._clock()
        record = ResearchRecord(
            identity_key=key,
            result=result,
            created_at=now,
            expires_at=now + self.ttl_seconds,
        )
        with self._lock:
            self._records[key] = record
        return record

    def clear_expired(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in expired:
                del self._records[key]
        if expired:
            logger.info(f"Research cache: cleared {len(expired)} expired records")
        return len(expired)

    def clear(self):
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)

    def get_stats(self) -> Dict:
        return {
            "research_entries": len(self._records),
            "hits": self.hits,
            "misses": self.misses,
        }
