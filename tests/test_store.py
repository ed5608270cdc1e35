"""Tests for session persistence (in-memory and SQLite)."""

import asyncio

from core.activity import log_activity_safely
from database.repositories import ActivityRepository, LeadRepository, SessionRepository
from database.session import close_db, init_db
from database.store import DatabaseActivitySink, InMemorySessionStore, SessionStore, SqlSessionStore
from lead_scoring.models import ConversationStage, FieldSource, LeadData, LeadRecord, Session
from lead_scoring.state_machine import StageStateMachine


def run(coro):
    return asyncio.run(coro)


def make_session(session_id="s1") -> Session:
    session = Session(session_id=session_id)
    session.current_stage = ConversationStage.EMAIL_CAPTURE
    session.lead_data.set_field("name", "Jane Doe", FieldSource.USER)
    session.metadata.total_messages = 2
    return session


class TestInMemoryStore:
    def test_protocol(self):
        assert isinstance(InMemorySessionStore(), SessionStore)

    def test_round_trip(self):
        store = InMemorySessionStore()
        run(store.put_session(make_session()))
        loaded = run(store.get_session("s1"))

        assert loaded.current_stage == ConversationStage.EMAIL_CAPTURE
        assert loaded.lead_data.name == "Jane Doe"
        assert loaded.lead_data.source_of("name") == FieldSource.USER
        assert run(store.get_session("missing")) is None

    def test_snapshots_are_isolated(self):
        store = InMemorySessionStore()
        session = make_session()
        run(store.put_session(session))
        session.lead_data.name = "Changed"
        assert run(store.get_session("s1")).lead_data.name == "Jane Doe"


class TestSqlStore:
    def test_sessions_and_leads(self, tmp_path):
        async def scenario():
            factory = await init_db(f"sqlite:///{tmp_path / 'engine.db'}")
            try:
                store = SqlSessionStore(factory)
                session = make_session()
                await store.put_session(session)

                session.current_stage = ConversationStage.BACKGROUND_RESEARCH
                await store.put_session(session)
                loaded = await store.get_session("s1")

                lead = LeadRecord(
                    session_id="s1",
                    lead_data=LeadData(name="Jane Doe", email="jane@acme.com"),
                    engagement_score=70,
                    final_stage=ConversationStage.CALL_TO_ACTION,
                    total_interactions=8,
                    conversation_summary="{}",
                )
                await store.put_lead(lead)
                loaded_lead = await store.get_lead(lead.lead_id)

                async with factory() as db:
                    stages = await SessionRepository(db).count_by_stage()
                    recent = await LeadRepository(db).list_recent()
                return loaded, loaded_lead, stages, recent
            finally:
                await close_db()

        loaded, loaded_lead, stages, recent = run(scenario())
        assert loaded.current_stage == ConversationStage.BACKGROUND_RESEARCH
        assert loaded.lead_data.name == "Jane Doe"
        assert loaded_lead.lead_data.email == "jane@acme.com"
        assert loaded_lead.final_stage == ConversationStage.CALL_TO_ACTION
        assert stages == {"background_research": 1}
        assert recent[0].email == "jane@acme.com"

    def test_state_machine_on_sqlite(self, tmp_path, optimizer):
        async def scenario():
            factory = await init_db(f"sqlite:///{tmp_path / 'engine.db'}")
            try:
                machine = StageStateMachine(
                    optimizer=optimizer,
                    store=SqlSessionStore(factory),
                    activity_sink=DatabaseActivitySink(factory),
                )
                await machine.initialize_conversation("s1")
                await machine.process_message("s1", "Hi")

                restarted = StageStateMachine(optimizer=optimizer, store=SqlSessionStore(factory))
                session = await restarted.get_session("s1")

                async with factory() as db:
                    activities = await ActivityRepository(db).get_recent()
                return session, activities
            finally:
                await close_db()

        session, activities = run(scenario())
        assert session.current_stage == ConversationStage.NAME_COLLECTION
        assert len(session.history) == 2
        assert {a.type for a in activities} == {"conversation_started", "stage_transition"}


def test_log_activity_safely_absorbs_failures():
    class BrokenSink:
        async def log_activity(self, type, title, status="completed", metadata=None):
            raise RuntimeError("down")

    run(log_activity_safely(BrokenSink(), "x", "X"))
    run(log_activity_safely(None, "x", "X"))
