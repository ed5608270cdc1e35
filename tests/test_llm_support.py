"""Tests for token estimation, generation configs, the OpenAI provider, the conversation cache and the call guard."""

import asyncio
from types import SimpleNamespace

import httpx
import openai
import pytest

from core.errors import UpstreamUnavailable
from llm.call_guard import CallCoalescer, hash_prompt
from llm.client import MODEL_ROLE, USER_ROLE, normalize_role, to_chat_messages
from llm.conversation_cache import ConversationCache
from llm.generation_config import CallKind, create_generation_config
from llm.providers.openai_provider import OpenAIProvider
from llm.token_estimator import HeuristicTokenEstimator, create_token_estimator


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


# ── Token Estimator ───────────────────────────────────

class TestTokenEstimator:
    def test_empty_text(self):
        assert HeuristicTokenEstimator().estimate("") == 0

    def test_latin_four_chars_per_token(self):
        estimator = HeuristicTokenEstimator()
        assert estimator.estimate("abcd") == 1
        assert estimator.estimate("abcde") == 2
        assert estimator.estimate("a" * 400) == 100

    def test_non_latin_is_denser(self):
        estimator = HeuristicTokenEstimator()
        assert estimator.estimate("日本語のテキスト") > estimator.estimate("abcdefgh")

    def test_monotonic_in_length(self):
        estimator = HeuristicTokenEstimator()
        text = "Hello, 世界! We automate invoices."
        estimates = [estimator.estimate(text[:i]) for i in range(len(text) + 1)]
        assert estimates == sorted(estimates)

    def test_factory_defaults_to_heuristic(self):
        assert isinstance(create_token_estimator("heuristic"), HeuristicTokenEstimator)


# ── Generation Config ─────────────────────────────────

class TestGenerationConfig:
    @pytest.mark.parametrize("kind,max_tokens,temperature,ttl", [
        ("chat", 2048, 0.7, 1800),
        ("analysis", 1024, 0.3, 3600),
        ("document", 1536, 0.4, 7200),
        ("live", 512, 0.6, 300),
        ("research", 3072, 0.5, 3600),
    ])
    def test_defaults(self, kind, max_tokens, temperature, ttl):
        config = create_generation_config(kind)
        assert config.max_output_tokens == max_tokens
        assert config.temperature == temperature
        assert config.cache_config.ttl_seconds == ttl

    def test_aliases(self):
        assert create_generation_config("text_generation") == create_generation_config(CallKind.CHAT)
        assert create_generation_config("document_analysis") == create_generation_config(CallKind.DOCUMENT)

    def test_overrides_do_not_mutate_defaults(self):
        config = create_generation_config("chat", {"temperature": 0.1, "cache_config": {"enabled": False}})
        assert config.temperature == 0.1
        assert config.cache_config.enabled is False
        assert create_generation_config("chat").temperature == 0.7

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            create_generation_config("poetry")


# ── LLM Client helpers ────────────────────────────────

def test_role_normalization():
    assert normalize_role("assistant") == MODEL_ROLE
    assert normalize_role(MODEL_ROLE) == MODEL_ROLE
    assert normalize_role("user") == USER_ROLE
    assert normalize_role("system") == USER_ROLE


def test_to_chat_messages():
    messages = to_chat_messages([
        {"role": USER_ROLE, "content": "hi"},
        {"role": MODEL_ROLE, "content": "hello"},
    ])
    assert [m["role"] for m in messages] == ["user", "assistant"]


class FakeCompletions:
    def __init__(self, reply="Hello there", error=None):
        self.reply = reply
        self.error = error
        self.requests = []

    async def create(self, **request):
        self.requests.append(request)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=f"  {self.reply}  ")
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def make_openai_provider(completions):
    provider = OpenAIProvider(api_key="sk-test", model_id="gpt-4o-mini")
    provider._async_client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return provider


class TestOpenAIProvider:
    def test_generate_uses_async_client(self):
        completions = FakeCompletions()
        provider = make_openai_provider(completions)
        config = create_generation_config(CallKind.LIVE)

        text = asyncio.run(provider.generate(
            [{"role": USER_ROLE, "content": "Hi"}, {"role": MODEL_ROLE, "content": "Hey"}],
            config,
        ))

        assert text == "Hello there"
        request = completions.requests[0]
        assert request["model"] == "gpt-4o-mini"
        assert request["max_tokens"] == config.max_output_tokens
        assert [m["role"] for m in request["messages"]] == ["user", "assistant"]

    def test_api_error_is_upstream_unavailable(self):
        error = openai.APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
        provider = make_openai_provider(FakeCompletions(error=error))
        with pytest.raises(UpstreamUnavailable):
            asyncio.run(provider.generate([{"role": USER_ROLE, "content": "Hi"}], create_generation_config(CallKind.CHAT)))


# ── Conversation Cache ────────────────────────────────

class TestConversationCache:
    def test_put_and_get(self):
        cache = ConversationCache()
        cache.put("s1", "h1", 2, [{"role": "user", "content": "x"}], 5)
        entry = cache.get("s1", "h1")
        assert entry.history_length == 2
        assert cache.get("s2", "h1") is None

    def test_entries_expire(self):
        clock = FakeClock()
        cache = ConversationCache(ttl_seconds=60, clock=clock)
        cache.put("s1", "h1", 1, [], 0)
        clock.advance(61)
        assert cache.get("s1", "h1") is None
        assert cache.entry_count() == 0

    def test_clear_expired_only_removes_expired(self):
        clock = FakeClock()
        cache = ConversationCache(ttl_seconds=60, clock=clock)
        cache.put("s1", "old", 1, [], 0)
        clock.advance(30)
        cache.put("s1", "new", 2, [], 0)
        clock.advance(31)
        assert cache.clear_expired() == 1
        assert cache.get("s1", "new") is not None

    def test_eviction_is_per_session(self):
        cache = ConversationCache(max_entries_per_session=2)
        cache.put("other", "keep", 1, [], 0)
        for i in range(3):
            cache.put("s1", f"h{i}", i + 1, [], 0)
        assert cache.entry_count("s1") == 2
        assert cache.get("s1", "h0") is None
        assert cache.get("other", "keep") is not None

    def test_longest_prefix_wins(self):
        cache = ConversationCache()
        cache.put("s1", "p1", 1, [], 0)
        cache.put("s1", "p3", 3, [], 0)
        entry = cache.find_longest_prefix("s1", ["p0", "p1", "p2", "p3", "p4"])
        assert entry.content_hash == "p3"
        assert cache.get_stats()["hits"] == 1

    def test_miss_is_counted(self):
        cache = ConversationCache()
        assert cache.find_longest_prefix("s1", ["p0", "p1"]) is None
        assert cache.get_stats()["misses"] == 1


# ── Call Guard ────────────────────────────────────────

class TestCallCoalescer:
    def test_hash_normalizes_whitespace_and_case(self):
        assert hash_prompt("Hello   World") == hash_prompt("hello world ")
        assert hash_prompt("hello") != hash_prompt("goodbye")
        assert len(hash_prompt("hello")) == 16

    def test_duplicate_inside_window_is_rejected(self):
        clock = FakeClock()
        guard = CallCoalescer(default_min_interval_ms=5000, clock=clock)
        assert guard.guard("alice", "h").allowed
        clock.advance(2.0)
        decision = guard.guard("alice", "h")
        assert not decision.allowed
        assert decision.retry_after_ms == 3000

    def test_allowed_after_window(self):
        clock = FakeClock()
        guard = CallCoalescer(default_min_interval_ms=5000, clock=clock)
        guard.guard("alice", "h")
        clock.advance(5.0)
        assert guard.guard("alice", "h").allowed

    def test_keys_are_independent(self):
        guard = CallCoalescer(default_min_interval_ms=5000, clock=FakeClock())
        assert guard.guard("alice", "h1").allowed
        assert guard.guard("alice", "h2").allowed
        assert guard.guard("bob", "h1").allowed

    def test_zero_interval_never_rejects(self):
        guard = CallCoalescer(clock=FakeClock())
        assert guard.guard("alice", "h", min_interval_ms=0).allowed
        assert guard.guard("alice", "h", min_interval_ms=0).allowed

    def test_retry_after_is_at_least_one(self):
        clock = FakeClock()
        guard = CallCoalescer(default_min_interval_ms=5000, clock=clock)
        guard.guard("alice", "h")
        clock.advance(4.9999)
        decision = guard.guard("alice", "h")
        assert not decision.allowed
        assert decision.retry_after_ms >= 1

    def test_prune(self):
        clock = FakeClock()
        guard = CallCoalescer(default_min_interval_ms=1000, clock=clock)
        guard.guard("alice", "h1")
        guard.guard("bob", "h1")
        clock.advance(2.0)
        guard.guard("carol", "h1")
        assert guard.prune() == 2
        assert len(guard) == 1

    def test_prune_empties_guard_after_burst(self):
        clock = FakeClock()
        guard = CallCoalescer(default_min_interval_ms=1, clock=clock)
        for i in range(1000):
            assert guard.guard(f"caller-{i}", "h").allowed
        assert len(guard) == 1000

        clock.advance(0.01)
        assert guard.prune() == 1000
        assert len(guard) == 0
