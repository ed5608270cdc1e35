"""
Stage State Machine for the qualification funnel.

Owns the authoritative funnel state per session:
1. Extracts signals (name, email, pain points) from each message
2. Updates lead data incrementally
3. Evaluates the current stage's exit predicate and advances at most one step
4. Builds the reply through the context optimizer (or a stage template)
5. Flags background research exactly once, on entering BACKGROUND_RESEARCH
"""

import asyncio
import json
import logging
from datetime import timedelta
from typing import Dict, Optional, Tuple

from core.activity import ActivitySink, log_activity_safely
from core.errors import AlreadyExists, EngineError, InvalidState, NotFound
from core.metrics import record_stage_transition
from llm.client import LLMClient
from llm.context_optimizer import ContextOptimizer
from llm.generation_config import CallKind, create_generation_config
from llm.prompt_templates import PromptTemplates

from .domain_analysis import analyze_email_domain, is_personal_email
from .entity_extractor import EntityExtractor
from .models import (
    CompletionResult,
    ConversationStage,
    FieldSource,
    HistoryEntry,
    LeadRecord,
    ProcessResult,
    ResearchEnrichment,
    Session,
    StageTransition,
    utcnow,
)
from .stages import exit_predicates

logger = logging.getLogger(__name__)

# Stages from which visitor messages are read for pain points
PAIN_POINT_STAGES = {
    ConversationStage.BACKGROUND_RESEARCH,
    ConversationStage.PROBLEM_DISCOVERY,
    ConversationStage.SOLUTION_PRESENTATION,
    ConversationStage.CALL_TO_ACTION,
}

STAGE_ENGAGEMENT_BONUS = {
    ConversationStage.CALL_TO_ACTION: 40,
    ConversationStage.SOLUTION_PRESENTATION: 30,
    ConversationStage.PROBLEM_DISCOVERY: 20,
}

NEXT_STEPS = {
    ConversationStage.CALL_TO_ACTION: [
        "Schedule consultation call",
        "Send follow-up email sequence",
        "Prepare custom AI strategy proposal",
    ],
    ConversationStage.SOLUTION_PRESENTATION: [
        "Follow up with solution details",
        "Send case study examples",
        "Schedule discovery call",
    ],
}
DEFAULT_NEXT_STEPS = [
    "Continue conversation to gather more information",
    "Send educational content",
    "Follow up with personalized insights",
]


class StageStateMachine:
    """
    Funnel state per session.

    Operations on one session are serialized by a per-session lock;
    different sessions are independent.
    """

    def __init__(
        self,
        optimizer: ContextOptimizer,
        store,
        llm: Optional[LLMClient] = None,
        activity_sink: Optional[ActivitySink] = None,
        extractor: Optional[EntityExtractor] = None,
        require_business_email: bool = True,
        assistant_name: str = "F.B/c AI strategy assistant",
        token_budget: Optional[int] = None,
    ):
        """
        Initialize the state machine.

        Args:
            optimizer: Context optimizer used to build LLM payloads
            store: SessionStore for sessions and lead records
            llm: LLM client; None means deterministic stage templates
            activity_sink: Fire-and-forget activity destination
            extractor: Signal extractor
            require_business_email: Reject personal webmail at EMAIL_CAPTURE
            assistant_name: Name used in prompts and templates
            token_budget: Token budget override for chat payloads
        """
        self.optimizer = optimizer
        self.store = store
        self.llm = llm
        self.activity_sink = activity_sink
        self.extractor = extractor or EntityExtractor()
        self.require_business_email = require_business_email
        self.assistant_name = assistant_name
        self.token_budget = token_budget

        self.chat_config = create_generation_config(CallKind.CHAT)
        self._predicates = exit_predicates(require_business_email)
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

        logger.info(
            f"StageStateMachine initialized (llm={'on' if llm else 'off'}, "
            f"business_email={require_business_email})"
        )

    # ── Session lookup ────────────────────────────────────────────────

    def _lock(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    def _forget(self, session_id: str):
        self._sessions.pop(session_id, None)
        self._locks.pop(session_id, None)

    async def _load(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = await self.store.get_session(session_id)
            # Completed sessions are served from the store, never re-tracked
            if session is not None and not session.is_completed:
                self._sessions[session_id] = session
        if session is None:
            raise NotFound(f"Session {session_id} not found", {"session_id": session_id})
        return session

    async def get_session(self, session_id: str) -> Session:
        return await self._load(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    def evict_idle(self, max_idle_seconds: float) -> int:
        """
        Drop sessions idle longer than max_idle_seconds from memory.

        The store keeps their snapshots and the next call reloads them.
        Sessions with an operation in flight are kept.
        """
        cutoff = utcnow() - timedelta(seconds=max_idle_seconds)
        stale = [
            sid for sid, s in self._sessions.items()
            if s.metadata.last_activity_at < cutoff and not self._lock(sid).locked()
        ]
        for sid in stale:
            self._forget(sid)
        # Locks left behind by lookups of unknown ids
        for sid in [k for k, lock in self._locks.items() if k not in self._sessions and not lock.locked()]:
            del self._locks[sid]
        if stale:
            logger.info(f"Evicted {len(stale)} idle sessions")
        return len(stale)

    # ── Operations ────────────────────────────────────────────────────

    async def initialize_conversation(self, session_id: str) -> Session:
        """
        Start tracking a new session at GREETING.

        Raises:
            AlreadyExists: if the id is already tracked
        """
        async with self._lock(session_id):
            if session_id in self._sessions or await self.store.get_session(session_id) is not None:
                raise AlreadyExists(f"Session {session_id} already exists", {"session_id": session_id})

            session = Session(session_id=session_id)
            self._sessions[session_id] = session
            await self.store.put_session(session)

        logger.info(f"Conversation {session_id} initialized")
        await log_activity_safely(
            self.activity_sink,
            "conversation_started",
            "Conversation Started",
            metadata={"session_id": session_id},
        )
        return session

    async def process_message(self, session_id: str, text: str) -> ProcessResult:
        """
        Apply one visitor message.

        Args:
            session_id: Session id
            text: Visitor message

        Returns:
            ProcessResult

        Raises:
            NotFound: unknown session
            InvalidState: session already completed
        """
        async with self._lock(session_id):
            session = await self._load(session_id)
            if session.is_completed:
                raise InvalidState(
                    f"Session {session_id} is completed; start a new session",
                    {"session_id": session_id},
                )

            stage = session.current_stage
            now = utcnow()
            session.history.append(HistoryEntry(role="user", content=text, stage=stage, timestamp=now))
            session.metadata.total_messages += 1
            session.metadata.last_activity_at = now

            retry_key = self._apply_signals(session, text)

            advanced = self._predicates[stage](session.lead_data, text)
            should_trigger_research = False
            if advanced:
                self._transition(session, stage.next_stage(), trigger=f"{stage.value}_exit")
                if (
                    session.current_stage is ConversationStage.BACKGROUND_RESEARCH
                    and not session.research_triggered
                ):
                    session.research_triggered = True
                    should_trigger_research = True

            should_send_follow_up = session.current_stage is ConversationStage.CALL_TO_ACTION

            response, error = await self._respond(session, advanced, retry_key)
            session.history.append(
                HistoryEntry(role="assistant", content=response, stage=session.current_stage)
            )
            await self.store.put_session(session)

            if advanced:
                await log_activity_safely(
                    self.activity_sink,
                    "stage_transition",
                    f"Stage {stage.value} -> {session.current_stage.value}",
                    metadata={"session_id": session_id},
                )

            return ProcessResult(
                response=response,
                new_stage=session.current_stage,
                should_trigger_research=should_trigger_research,
                should_send_follow_up=should_send_follow_up,
                updated_session=session,
                error=error,
            )

    async def integrate_research_data(
        self,
        session_id: str,
        enrichment: ResearchEnrichment,
    ) -> Session:
        """
        Merge research into lead data.

        A field is only written when absent or not user-provided;
        ai_readiness keeps the higher score.
        """
        async with self._lock(session_id):
            session = await self._load(session_id)
            if session.is_completed:
                raise InvalidState(f"Session {session_id} is completed", {"session_id": session_id})

            lead = session.lead_data
            updated = []
            for name in ("company", "company_size", "industry", "role", "decision_maker"):
                if lead.merge_field(name, getattr(enrichment, name), FieldSource.RESEARCH):
                    updated.append(name)

            if enrichment.ai_readiness is not None:
                if lead.ai_readiness is None or enrichment.ai_readiness > lead.ai_readiness:
                    lead.set_field("ai_readiness", enrichment.ai_readiness, FieldSource.RESEARCH)
                    updated.append("ai_readiness")

            session.research = enrichment
            await self.store.put_session(session)

            logger.info(f"Research integrated into {session_id}: {updated}")
            await log_activity_safely(
                self.activity_sink,
                "research_integrated",
                "Research Integrated",
                metadata={
                    "session_id": session_id,
                    "fields": updated,
                    "confidence": enrichment.confidence,
                },
            )
            return session

    async def complete_conversation(self, session_id: str) -> CompletionResult:
        """
        Finalize a session that reached CALL_TO_ACTION.

        Snapshots the lead into a lead record and marks the session
        terminal.
        """
        async with self._lock(session_id):
            session = await self._load(session_id)
            if session.current_stage is not ConversationStage.CALL_TO_ACTION:
                raise InvalidState(
                    f"Session {session_id} cannot complete from {session.current_stage.value}",
                    {"session_id": session_id, "stage": session.current_stage.value},
                )

            final_stage = session.current_stage
            summary = self.build_conversation_summary(session)
            engagement = self.calculate_engagement_score(session)

            record = LeadRecord(
                session_id=session_id,
                lead_data=session.lead_data,
                engagement_score=engagement,
                final_stage=final_stage,
                total_interactions=session.metadata.total_messages,
                conversation_summary=summary,
            )
            await self.store.put_lead(record)

            self._transition(session, ConversationStage.COMPLETED, trigger="complete_conversation")
            session.completed_at = utcnow()
            session.lead_id = record.lead_id
            await self.store.put_session(session)
            self._forget(session_id)
            self.optimizer.cache.clear_session(session_id)

            logger.info(f"Conversation {session_id} completed (lead {record.lead_id})")
            await log_activity_safely(
                self.activity_sink,
                "conversation_completed",
                "Conversation Completed",
                metadata={
                    "session_id": session_id,
                    "lead_id": record.lead_id,
                    "total_messages": session.metadata.total_messages,
                    "final_stage": final_stage.value,
                },
            )

            return CompletionResult(
                lead_data=session.lead_data,
                conversation_summary=summary,
                next_steps=list(NEXT_STEPS.get(final_stage, DEFAULT_NEXT_STEPS)),
                lead_id=record.lead_id,
                engagement_score=engagement,
            )

    # ── Internals ─────────────────────────────────────────────────────

    def _apply_signals(self, session: Session, text: str) -> Optional[str]:
        """
        Update lead data from one message.

        Returns the retry template key to use if the stage does not advance.
        """
        stage = session.current_stage
        lead = session.lead_data
        signals = self.extractor.extract(
            text, allow_bare_name=stage is ConversationStage.NAME_COLLECTION
        )
        retry_key = stage.value

        if signals.name and (
            not lead.name
            or stage in (ConversationStage.GREETING, ConversationStage.NAME_COLLECTION)
        ):
            lead.set_field("name", signals.name, FieldSource.USER)

        if signals.email:
            if self.require_business_email and is_personal_email(signals.email):
                logger.info(f"Session {session.session_id}: personal email rejected")
                retry_key = "email_capture_personal"
            else:
                self._apply_email(session, signals.email)

        if stage in PAIN_POINT_STAGES and signals.pain_points:
            added = lead.add_pain_points(signals.pain_points)
            if added:
                logger.debug(f"Session {session.session_id}: pain points {added}")

        return retry_key

    def _apply_email(self, session: Session, email: str):
        lead = session.lead_data
        lead.set_field("email", email, FieldSource.USER)

        analysis = analyze_email_domain(email)
        if analysis is None:
            return
        lead.set_field("email_domain", analysis.domain, FieldSource.USER)
        lead.merge_field("company", analysis.company_name, FieldSource.INFERRED)
        lead.merge_field("company_size", analysis.company_size, FieldSource.INFERRED)
        lead.merge_field("industry", analysis.industry, FieldSource.INFERRED)
        lead.merge_field("decision_maker", analysis.decision_maker, FieldSource.INFERRED)
        lead.merge_field("ai_readiness", analysis.ai_readiness, FieldSource.INFERRED)

    def _transition(self, session: Session, to_stage: ConversationStage, trigger: str):
        from_stage = session.current_stage
        if to_stage.index <= from_stage.index:
            raise InvalidState(
                f"Illegal transition {from_stage.value} -> {to_stage.value}",
                {"session_id": session.session_id},
            )

        session.current_stage = to_stage
        session.metadata.stage_transitions.append(
            StageTransition(from_stage=from_stage, to_stage=to_stage, trigger=trigger)
        )
        record_stage_transition(from_stage.value, to_stage.value)
        logger.info(f"Session {session.session_id}: {from_stage.value} -> {to_stage.value}")

    async def _respond(
        self,
        session: Session,
        advanced: bool,
        retry_key: Optional[str],
    ) -> Tuple[str, Optional[str]]:
        """Reply text and error classification (None on success)."""
        lead_context = session.lead_data.context()
        template = PromptTemplates.get_stage_response(
            session.current_stage.value,
            advanced,
            lead_context,
            assistant_name=self.assistant_name,
            retry_key=None if advanced else retry_key,
        )
        if self.llm is None:
            return template, None

        guidance = None if advanced else f"The visitor did not satisfy this stage yet. Reply in the spirit of: {template}"
        system_prompt = PromptTemplates.get_stage_system_prompt(
            session.current_stage.value,
            lead_context,
            assistant_name=self.assistant_name,
            custom_instructions=guidance,
        )

        try:
            optimized = await self.optimizer.optimize(
                session.turns(),
                system_prompt,
                session.session_id,
                token_budget=self.token_budget,
            )
            text = await self.llm.generate(optimized.payload, self.chat_config)
        except EngineError as e:
            logger.warning(f"Reply generation failed for {session.session_id}: {e}")
            return template, e.kind

        return (text or template), None

    # ── Summaries ─────────────────────────────────────────────────────

    def build_conversation_summary(self, session: Session) -> str:
        """Deterministic JSON summary of a session."""
        lead = session.lead_data
        duration = session.metadata.last_activity_at - session.metadata.created_at
        summary = {
            "participant": lead.name,
            "company": lead.company,
            "email_domain": lead.email_domain,
            "pain_points": list(lead.pain_points),
            "pain_categories": [
                self.extractor.categorize_pain_point(p) for p in lead.pain_points
            ],
            "ai_readiness": lead.ai_readiness,
            "stage_reached": session.current_stage.value,
            "total_messages": session.metadata.total_messages,
            "duration_minutes": round(duration.total_seconds() / 60),
        }
        return json.dumps(summary, indent=2)

    @staticmethod
    def calculate_engagement_score(session: Session) -> int:
        score = min(session.metadata.total_messages * 5, 30)
        score += STAGE_ENGAGEMENT_BONUS.get(session.current_stage, 0)
        score += len(session.lead_data.pain_points) * 5
        return min(100, score)
