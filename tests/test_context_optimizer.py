"""Tests for the context/prompt optimizer."""

import asyncio

import pytest

from llm.context_optimizer import MIN_TOKEN_BUDGET, ContextOptimizer, ExtractiveSummarizer, LLMSummarizer
from llm.conversation_cache import ConversationCache
from llm.prompt_templates import PromptTemplates

SYSTEM_PROMPT = "You are a helpful assistant."


def make_history(count: int, words: int = 5):
    history = []
    for i in range(count):
        role = "user" if i % 2 == 0 else "model"
        history.append({"role": role, "content": f"Turn {i}. " + " ".join(["word"] * words)})
    return history


class FailingSummarizer:
    async def summarize(self, turns):
        raise RuntimeError("summarizer down")


class SlowSummarizer:
    async def summarize(self, turns):
        await asyncio.sleep(1.0)
        return "too late"


@pytest.fixture
def cache():
    return ConversationCache()


def run(coro):
    return asyncio.run(coro)


class TestOptimize:
    def test_short_history_fits(self, cache):
        optimizer = ContextOptimizer(cache)
        history = make_history(3)
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))

        assert result.payload[0] == {"role": "user", "content": SYSTEM_PROMPT}
        assert result.payload[1:] == history
        assert result.used_cache is False
        assert result.summary is None
        assert result.estimated_tokens == optimizer.payload_tokens(result.payload)

    def test_assistant_role_is_normalized(self, cache):
        optimizer = ContextOptimizer(cache)
        result = run(optimizer.optimize(
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
            SYSTEM_PROMPT,
            "s1",
        ))
        assert result.payload[-1]["role"] == "model"

    def test_repeated_call_is_served_from_cache(self, cache):
        optimizer = ContextOptimizer(cache, cache_min_messages=5)
        history = make_history(8)

        first = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        second = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))

        assert first.used_cache is False
        assert second.used_cache is True
        assert second.payload == first.payload
        assert second.estimated_tokens == first.estimated_tokens

    def test_cache_extends_with_new_turns(self, cache):
        optimizer = ContextOptimizer(cache, cache_min_messages=5)
        history = make_history(8)
        run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))

        longer = history + [{"role": "user", "content": "One more question."}]
        result = run(optimizer.optimize(longer, SYSTEM_PROMPT, "s1"))

        assert result.used_cache is True
        assert result.payload[-1]["content"] == "One more question."
        assert len(result.payload) == len(longer) + 1

    def test_short_history_never_uses_cache(self, cache):
        optimizer = ContextOptimizer(cache, cache_min_messages=5)
        history = make_history(4)
        run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        assert result.used_cache is False

    def test_cache_is_per_session(self, cache):
        optimizer = ContextOptimizer(cache)
        history = make_history(8)
        run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s2"))
        assert result.used_cache is False

    def test_changed_system_prompt_misses_cache(self, cache):
        optimizer = ContextOptimizer(cache)
        history = make_history(8)
        run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        result = run(optimizer.optimize(history, "A different prompt.", "s1"))
        assert result.used_cache is False
        assert result.payload[0]["content"] == "A different prompt."


class TestBudget:
    @pytest.mark.parametrize("budget", [MIN_TOKEN_BUDGET, MIN_TOKEN_BUDGET + 1, 60, 120, 250, 500])
    def test_payload_never_exceeds_budget(self, cache, budget):
        optimizer = ContextOptimizer(cache, token_budget=budget, tail_size=4)
        history = make_history(30, words=40)
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))
        assert result.estimated_tokens <= budget
        assert optimizer.payload_tokens(result.payload) <= budget

    def test_over_budget_summarizes_older_turns(self, cache):
        optimizer = ContextOptimizer(cache, token_budget=400, tail_size=4)
        history = make_history(30, words=40)
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))

        assert result.summary
        assert result.payload[0]["content"] == SYSTEM_PROMPT
        assert result.payload[1]["content"].startswith(PromptTemplates.SUMMARY_PREFIX)
        assert result.payload[-1] == history[-1]

    def test_summarization_failure_keeps_tail(self, cache):
        optimizer = ContextOptimizer(cache, summarizer=FailingSummarizer(), token_budget=400, tail_size=4)
        history = make_history(30, words=40)
        result = run(optimizer.optimize(history, SYSTEM_PROMPT, "s1"))

        assert result.summary is None
        assert result.estimated_tokens <= 400
        assert result.payload[-1] == history[-1]
        assert not any(
            t["content"].startswith(PromptTemplates.SUMMARY_PREFIX) for t in result.payload
        )

    def test_summarization_timeout(self, cache):
        optimizer = ContextOptimizer(
            cache,
            summarizer=SlowSummarizer(),
            token_budget=400,
            tail_size=4,
            summarization_timeout=0.05,
        )
        result = run(optimizer.optimize(make_history(30, words=40), SYSTEM_PROMPT, "s1"))
        assert result.summary is None
        assert result.estimated_tokens <= 400

    def test_per_call_budget_override(self, cache):
        optimizer = ContextOptimizer(cache, token_budget=100000)
        result = run(optimizer.optimize(make_history(30, words=40), SYSTEM_PROMPT, "s1", token_budget=200))
        assert result.estimated_tokens <= 200

    @pytest.mark.parametrize("budget", [0, 1, MIN_TOKEN_BUDGET - 1])
    def test_budget_below_minimum_is_rejected(self, cache, budget):
        optimizer = ContextOptimizer(cache)
        with pytest.raises(ValueError):
            run(optimizer.optimize(make_history(4), SYSTEM_PROMPT, "s1", token_budget=budget))


class TestSummarizers:
    def test_extractive_keeps_first_user_sentences(self):
        summary = run(ExtractiveSummarizer().summarize([
            {"role": "user", "content": "We invoice by hand. It takes days."},
            {"role": "model", "content": "That sounds slow."},
            {"role": "user", "content": "Our CRM is a spreadsheet!"},
        ]))
        assert "We invoice by hand." in summary
        assert "It takes days" not in summary
        assert "Our CRM is a spreadsheet!" in summary
        assert "1 assistant replies omitted" in summary

    def test_llm_summarizer_uses_analysis_config(self, fake_llm_factory):
        llm = fake_llm_factory(reply="  Visitor wants automation.  ")
        summary = run(LLMSummarizer(llm).summarize([{"role": "user", "content": "hi"}]))

        assert summary == "Visitor wants automation."
        assert "User: hi" in llm.calls[0][0]["content"]
