"""
Research Module for the Lead Qualification Engine.

This module handles:
- Concurrent company/person/role lookups with per-lookup timeouts
- Synthesis of one structured result per lead identity
- Identity-keyed research cache (24h TTL)
- Background hand-off into live sessions
"""

from .models import Citation, CompanyContext, PersonContext, ResearchResult, ResearchRecord
from .cache import ResearchCache, identity_key
from .search_provider import SearchProvider, SearchHit, HttpSearchProvider
from .role_detector import normalize_role, detect_role
from .aggregator import ResearchAggregator
from .dispatcher import ResearchDispatcher, ResearchJob

__all__ = [
    "Citation",
    "CompanyContext",
    "PersonContext",
    "ResearchResult",
    "ResearchRecord",
    "ResearchCache",
    "identity_key",
    "SearchProvider",
    "SearchHit",
    "HttpSearchProvider",
    "normalize_role",
    "detect_role",
    "ResearchAggregator",
    "ResearchDispatcher",
    "ResearchJob",
]
