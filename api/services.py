"""
Service initialization and dependency injection for the Lead Qualification Engine API.

Creates and manages all service instances used by the API. Shared state
(caches, coalescer, store) is constructed once here and injected; the
engine modules keep no module-level state of their own.
"""

import asyncio
import logging
from typing import Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config.settings import get_settings, Settings
from core.activity import ActivitySink, LoggingActivitySink
from database.store import (
    DatabaseActivitySink,
    InMemorySessionStore,
    SessionStore,
    SqlSessionStore,
)
from lead_scoring.state_machine import StageStateMachine
from llm.call_guard import CallCoalescer
from llm.client import LLMClient, create_llm_client
from llm.context_optimizer import ContextOptimizer, ExtractiveSummarizer, LLMSummarizer
from llm.conversation_cache import ConversationCache
from llm.token_estimator import TokenEstimator, create_token_estimator
from research.aggregator import ResearchAggregator
from research.cache import ResearchCache
from research.dispatcher import ResearchDispatcher
from research.search_provider import HttpSearchProvider, SearchProvider

from .middleware.rate_limit import RequestWindows

logger = logging.getLogger(__name__)


class Services:
    """Container for all application services."""

    def __init__(self):
        self.settings: Optional[Settings] = None
        self.llm: Optional[LLMClient] = None
        self.estimator: Optional[TokenEstimator] = None
        self.conversation_cache: Optional[ConversationCache] = None
        self.optimizer: Optional[ContextOptimizer] = None
        self.guard: Optional[CallCoalescer] = None
        self.store: Optional[SessionStore] = None
        self.activity_sink: Optional[ActivitySink] = None
        self.state_machine: Optional[StageStateMachine] = None
        self.research_cache: Optional[ResearchCache] = None
        self.search: Optional[SearchProvider] = None
        self.aggregator: Optional[ResearchAggregator] = None
        self.dispatcher: Optional[ResearchDispatcher] = None
        self.request_windows: Optional[RequestWindows] = None
        self._sweeper: Optional[asyncio.Task] = None
        self._initialized = False

    def initialize(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        """
        Initialize all services.

        Args:
            session_factory: Database session factory; None keeps sessions in memory
        """
        if self._initialized:
            return

        self.settings = get_settings()
        logger.info(f"Initializing services with provider: {self.settings.llm_provider}")

        try:
            self._init_llm()
            self._init_optimizer()
            self._init_persistence(session_factory)
            self._init_state_machine()
            self._init_research()
            self._initialized = True
            logger.info("All services initialized successfully")
        except Exception as e:
            logger.error(f"Service initialization failed: {e}")
            # Allow API to start even if some services fail
            self._initialized = True
            logger.warning("API starting in degraded mode")

    def _init_llm(self):
        """Initialize the LLM client. Failure leaves the engine on templates."""
        if not self.settings.llm_enabled:
            logger.info(f"LLM provider '{self.settings.llm_provider}' disabled, using templates")
            return
        try:
            self.llm = create_llm_client(self.settings)
        except Exception as e:
            logger.warning(f"LLM client unavailable ({e}), continuing without LLM")
            self.llm = None

    def _init_optimizer(self):
        """Initialize token estimator, conversation cache and optimizer."""
        s = self.settings

        self.estimator = create_token_estimator(s.token_estimator)
        self.conversation_cache = ConversationCache(ttl_seconds=s.conversation_cache_ttl_seconds)
        summarizer = LLMSummarizer(self.llm) if self.llm else ExtractiveSummarizer()

        self.optimizer = ContextOptimizer(
            cache=self.conversation_cache,
            estimator=self.estimator,
            summarizer=summarizer,
            token_budget=s.token_budget,
            tail_size=s.summary_tail_size,
            cache_min_messages=s.cache_min_messages,
            summarization_timeout=s.summarization_timeout_seconds,
        )
        self.guard = CallCoalescer(default_min_interval_ms=s.live_min_interval_ms)
        logger.info("Context optimizer ready")

    def _init_persistence(self, session_factory):
        """Initialize the session store and activity sink."""
        if session_factory is not None:
            self.store = SqlSessionStore(session_factory)
            self.activity_sink = DatabaseActivitySink(session_factory)
            logger.info("Session store: database")
        else:
            self.store = InMemorySessionStore()
            self.activity_sink = LoggingActivitySink()
            logger.info("Session store: in-memory")

    def _init_state_machine(self):
        s = self.settings
        self.state_machine = StageStateMachine(
            optimizer=self.optimizer,
            store=self.store,
            llm=self.llm,
            activity_sink=self.activity_sink,
            require_business_email=s.require_business_email,
            assistant_name=s.assistant_name,
            token_budget=s.token_budget,
        )

    def _init_research(self):
        """Initialize research cache, search provider, aggregator and dispatcher."""
        s = self.settings

        self.research_cache = ResearchCache(ttl_seconds=s.research_ttl_seconds)
        if s.search_api_url:
            self.search = HttpSearchProvider(api_url=s.search_api_url, api_key=s.search_api_key)
        else:
            logger.warning("SEARCH_API_URL not set, research will use domain fallback only")

        self.aggregator = ResearchAggregator(
            cache=self.research_cache,
            search=self.search,
            llm=self.llm,
            lookup_timeout=s.research_lookup_timeout_seconds,
            synthesis_timeout=s.research_synthesis_timeout_seconds,
        )
        self.dispatcher = ResearchDispatcher(self.aggregator, self.state_machine)
        logger.info("Research aggregator ready")

    async def start(self):
        """Start background workers on the running event loop."""
        if self.dispatcher:
            await self.dispatcher.start()
        if self.settings and self._sweeper is None:
            self._sweeper = asyncio.create_task(self._sweep_loop())

    async def shutdown(self):
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        if self.dispatcher:
            await self.dispatcher.stop()

    def sweep(self) -> Dict[str, int]:
        """Drop expired and idle in-memory state. Returns removals per map."""
        removed = {}
        if self.guard is not None:
            removed["guard"] = self.guard.prune()
        if self.conversation_cache is not None:
            removed["conversation_cache"] = self.conversation_cache.clear_expired()
        if self.research_cache is not None:
            removed["research_cache"] = self.research_cache.clear_expired()
        if self.state_machine is not None:
            removed["sessions"] = self.state_machine.evict_idle(self.settings.session_idle_seconds)
        if self.request_windows is not None:
            removed["rate_limit_clients"] = self.request_windows.prune()
        return removed

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.settings.sweep_interval_seconds)
            try:
                removed = self.sweep()
                logger.debug(f"State sweep: {removed}")
            except Exception as e:
                logger.error(f"State sweep failed: {e}")

    @property
    def is_ready(self) -> bool:
        return self._initialized and self.state_machine is not None

    def health(self) -> dict:
        """Return health status of all services."""
        return {
            "initialized": self._initialized,
            "llm": self.llm is not None,
            "state_machine": self.state_machine is not None,
            "store": type(self.store).__name__ if self.store is not None else None,
            "search": self.search is not None,
            "research_worker": bool(self.dispatcher and self.dispatcher.running),
            "sweeper": self._sweeper is not None and not self._sweeper.done(),
        }


# Singleton
_services = Services()


def get_services() -> Services:
    """Get the global services instance."""
    return _services


def initialize_services(session_factory=None) -> Services:
    """Initialize all services (called at startup)."""
    _services.initialize(session_factory)
    return _services


def reset_services():
    """Drop the current container (called at shutdown)."""
    global _services
    _services = Services()
