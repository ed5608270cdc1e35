"""Shared fixtures for Lead Qualification Engine tests."""

import asyncio
import os
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

# Ensure we use test settings: no LLM, no database, no search API
os.environ["LLM_PROVIDER"] = "none"
os.environ["DATABASE_URL"] = ""
os.environ["SEARCH_API_URL"] = ""
os.environ["RATE_LIMIT_PER_MINUTE"] = "10000"
os.environ["LIVE_MIN_INTERVAL_MS"] = "5000"

from config.settings import get_settings  # noqa: E402
from core.errors import UpstreamUnavailable  # noqa: E402
from database.store import InMemorySessionStore  # noqa: E402
from lead_scoring.state_machine import StageStateMachine  # noqa: E402
from llm.context_optimizer import ContextOptimizer  # noqa: E402
from llm.conversation_cache import ConversationCache  # noqa: E402
from research.models import Citation  # noqa: E402
from research.search_provider import SearchHit  # noqa: E402

get_settings.cache_clear()


class FakeLLM:
    """Scripted LLM client. Records every payload it receives."""

    def __init__(self, reply: str = "LLM reply", error: Optional[Exception] = None, delay: float = 0.0):
        self.reply = reply
        self.error = error
        self.delay = delay
        self.calls: List[List[Dict[str, str]]] = []

    async def generate(self, payload, config) -> str:
        self.calls.append(payload)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.reply

    def generate_stream(self, payload, config):
        yield self.reply


class FakeSearchProvider:
    """
    Search provider with per-lookup behaviour.

    behaviours maps "company" / "person" / "role" to "ok", "slow" or "down".
    """

    def __init__(self, behaviours: Optional[Dict[str, str]] = None, slow_seconds: float = 1.0):
        self.behaviours = behaviours or {}
        self.slow_seconds = slow_seconds
        self.calls: List[str] = []

    async def _lookup(self, lookup: str, query: str) -> SearchHit:
        self.calls.append(lookup)
        behaviour = self.behaviours.get(lookup, "ok")
        if behaviour == "down":
            raise UpstreamUnavailable(f"{lookup} search unreachable")
        if behaviour == "slow":
            await asyncio.sleep(self.slow_seconds)
        return SearchHit(
            text=f"{lookup} result for {query}",
            citations=[
                Citation(uri=f"https://{query}/{lookup}", title=f"{lookup} page"),
                Citation(uri=f"https://{query}/about", title="About"),
            ],
        )

    async def search_company(self, domain):
        return await self._lookup("company", domain)

    async def search_person(self, name, domain):
        return await self._lookup("person", domain)

    async def search_role(self, name, domain):
        return await self._lookup("role", domain)


class RecordingActivitySink:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.activities: List[Dict] = []

    async def log_activity(self, type, title, status="completed", metadata=None):
        if self.fail:
            raise RuntimeError("activity store down")
        self.activities.append({"type": type, "title": title, "status": status, "metadata": metadata})


@pytest.fixture
def fake_llm_factory():
    return FakeLLM


@pytest.fixture
def fake_search_factory():
    return FakeSearchProvider


@pytest.fixture
def activity_sink():
    return RecordingActivitySink()


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def optimizer():
    return ContextOptimizer(ConversationCache(), token_budget=8000)


@pytest.fixture
def machine(optimizer, store, activity_sink):
    """State machine on deterministic stage templates."""
    return StageStateMachine(optimizer=optimizer, store=store, activity_sink=activity_sink)


@pytest.fixture
def client():
    """Create a FastAPI test client with a fresh service container."""
    from api.main import create_app
    with TestClient(create_app()) as test_client:
        yield test_client
