"""
Prometheus business metrics for the Lead Qualification Engine.

HTTP-level metrics live in api/middleware/metrics.py; these counters are
recorded by the engine components themselves.
"""

from prometheus_client import Counter, Histogram

STAGE_TRANSITIONS = Counter(
    "lqe_stage_transitions_total",
    "Funnel stage transitions",
    ["from_stage", "to_stage"],
)
CACHE_HITS = Counter("lqe_cache_hits_total", "Cache hits", ["cache_type"])
CACHE_MISSES = Counter("lqe_cache_misses_total", "Cache misses", ["cache_type"])
SUMMARIZATIONS = Counter(
    "lqe_summarizations_total",
    "Conversation summarizations",
    ["outcome"],
)
LOOKUP_OUTCOMES = Counter(
    "lqe_research_lookups_total",
    "Research lookup outcomes",
    ["lookup", "outcome"],
)
GUARD_REJECTIONS = Counter(
    "lqe_guard_rejections_total",
    "Calls rejected by the call coalescer",
)
LLM_LATENCY = Histogram(
    "lqe_llm_duration_seconds",
    "LLM generation latency",
    ["provider"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0],
)


def record_stage_transition(from_stage: str, to_stage: str):
    STAGE_TRANSITIONS.labels(from_stage=from_stage, to_stage=to_stage).inc()


def record_cache(cache_type: str, hit: bool):
    if hit:
        CACHE_HITS.labels(cache_type=cache_type).inc()
    else:
        CACHE_MISSES.labels(cache_type=cache_type).inc()


def record_summarization(outcome: str):
    SUMMARIZATIONS.labels(outcome=outcome).inc()


def record_lookup(lookup: str, outcome: str):
    LOOKUP_OUTCOMES.labels(lookup=lookup, outcome=outcome).inc()


def record_guard_rejection():
    GUARD_REJECTIONS.inc()


def record_llm_latency(provider: str, seconds: float):
    LLM_LATENCY.labels(provider=provider).observe(seconds)
