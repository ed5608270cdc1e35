"""Tests for the stage state machine."""

import asyncio
import json
from datetime import timedelta

import pytest

from core.errors import AlreadyExists, InvalidState, NotFound, UpstreamUnavailable
from lead_scoring.models import (
    ConversationStage,
    FieldSource,
    LeadData,
    ResearchEnrichment,
)
from lead_scoring.state_machine import StageStateMachine


def run(coro):
    return asyncio.run(coro)


async def converse(machine, session_id, messages):
    await machine.initialize_conversation(session_id)
    results = []
    for message in messages:
        results.append(await machine.process_message(session_id, message))
    return results


HAPPY_PATH = [
    "Hi",
    "I'm Jane Doe",
    "jane@gmail.com",
    "jane@acme.com",
    "We struggle with manual data entry",
    "Also invoices are slow",
    "Sounds good",
    "Tuesday works",
]


# ── Funnel ────────────────────────────────────────────

class TestFunnel:
    def test_greeting_advances_on_any_message(self, machine):
        results = run(converse(machine, "s1", ["Hi"]))
        assert results[0].new_stage == ConversationStage.NAME_COLLECTION
        assert "Could you tell me your name?" in results[0].response

    def test_happy_path_stages(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH))
        stages = [r.new_stage for r in results]
        assert stages == [
            ConversationStage.NAME_COLLECTION,
            ConversationStage.EMAIL_CAPTURE,
            ConversationStage.EMAIL_CAPTURE,
            ConversationStage.BACKGROUND_RESEARCH,
            ConversationStage.PROBLEM_DISCOVERY,
            ConversationStage.SOLUTION_PRESENTATION,
            ConversationStage.CALL_TO_ACTION,
            ConversationStage.CALL_TO_ACTION,
        ]

    def test_name_is_captured(self, machine):
        results = run(converse(machine, "s1", ["Hi", "I'm Jane Doe"]))
        lead = results[-1].updated_session.lead_data
        assert lead.name == "Jane Doe"
        assert lead.source_of("name") == FieldSource.USER
        assert "Great to meet you, Jane Doe!" in results[-1].response

    def test_bare_name_accepted_when_asked(self, machine):
        results = run(converse(machine, "s1", ["Hello there", "jane"]))
        assert results[-1].updated_session.lead_data.name == "Jane"
        assert results[-1].new_stage == ConversationStage.EMAIL_CAPTURE

    def test_missing_name_gets_retry_prompt(self, machine):
        results = run(converse(machine, "s1", ["Hi", "what do you do?"]))
        assert results[-1].new_stage == ConversationStage.NAME_COLLECTION
        assert "didn't quite catch your name" in results[-1].response

    def test_personal_email_rejected(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH[:3]))
        result = results[-1]
        assert result.new_stage == ConversationStage.EMAIL_CAPTURE
        assert "work email" in result.response
        assert result.updated_session.lead_data.email is None

    def test_personal_email_allowed_when_configured(self, optimizer, store):
        machine = StageStateMachine(optimizer=optimizer, store=store, require_business_email=False)
        results = run(converse(machine, "s1", HAPPY_PATH[:3]))
        assert results[-1].new_stage == ConversationStage.BACKGROUND_RESEARCH

    def test_business_email_enriches_lead(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH[:4]))
        lead = results[-1].updated_session.lead_data
        assert lead.email == "jane@acme.com"
        assert lead.email_domain == "acme.com"
        assert lead.company == "Acme"
        assert lead.source_of("company") == FieldSource.INFERRED
        assert 0 <= lead.ai_readiness <= 100
        assert "Acme" in results[-1].response

    def test_research_triggered_exactly_once(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH))
        flags = [r.should_trigger_research for r in results]
        assert flags.count(True) == 1
        assert flags[3] is True

    def test_pain_points_collected(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH[:6]))
        pain_points = results[-1].updated_session.lead_data.pain_points
        assert pain_points == ["We struggle with manual data entry", "invoices are slow"]
        assert "manual data entry" in results[-1].response

    def test_follow_up_only_in_call_to_action(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH))
        assert [r.should_send_follow_up for r in results] == [False] * 6 + [True, True]

    def test_stage_never_moves_backwards(self, machine):
        messages = HAPPY_PATH + ["", "my name is Bob", "bob@other.com", "Hi"]
        results = run(converse(machine, "s1", messages))
        indices = [r.new_stage.index for r in results]
        assert indices == sorted(indices)

    def test_at_most_one_step_per_message(self, machine):
        results = run(converse(machine, "s1", ["My name is Jane Doe, jane@acme.com, we struggle with manual work"]))
        assert results[0].new_stage == ConversationStage.NAME_COLLECTION

    def test_blank_message_does_not_advance(self, machine):
        results = run(converse(machine, "s1", ["   "]))
        assert results[0].new_stage == ConversationStage.GREETING
        assert results[0].response

    def test_interest_name_email_scenario(self, machine):
        results = run(converse(machine, "s1", [
            "Hi, I'm interested in AI",
            "My name is John Smith",
            "My email is john@acme.com",
        ]))

        assert [r.new_stage for r in results] == [
            ConversationStage.NAME_COLLECTION,
            ConversationStage.EMAIL_CAPTURE,
            ConversationStage.BACKGROUND_RESEARCH,
        ]
        lead = results[-1].updated_session.lead_data
        assert lead.name == "John Smith"
        assert lead.email == "john@acme.com"
        assert lead.email_domain == "acme.com"
        assert results[-1].should_trigger_research is True

    def test_history_and_transitions_recorded(self, machine):
        results = run(converse(machine, "s1", HAPPY_PATH[:2]))
        session = results[-1].updated_session
        assert [h.role for h in session.history] == ["user", "assistant", "user", "assistant"]
        assert session.metadata.total_messages == 2
        assert len(session.metadata.stage_transitions) == 2


# ── Errors ────────────────────────────────────────────

class TestErrors:
    def test_duplicate_session(self, machine):
        run(machine.initialize_conversation("s1"))
        with pytest.raises(AlreadyExists):
            run(machine.initialize_conversation("s1"))

    def test_unknown_session(self, machine):
        with pytest.raises(NotFound):
            run(machine.process_message("missing", "Hi"))

    def test_complete_before_call_to_action(self, machine):
        run(converse(machine, "s1", ["Hi"]))
        with pytest.raises(InvalidState):
            run(machine.complete_conversation("s1"))

    def test_completed_session_rejects_everything(self, machine):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH)
            await machine.complete_conversation("s1")
            for call in (
                machine.process_message("s1", "Hello again"),
                machine.integrate_research_data("s1", ResearchEnrichment(company="X")),
                machine.complete_conversation("s1"),
            ):
                with pytest.raises(InvalidState):
                    await call

        run(scenario())

    def test_failing_activity_sink_is_ignored(self, optimizer, store):
        class BrokenSink:
            async def log_activity(self, type, title, status="completed", metadata=None):
                raise RuntimeError("activity store down")

        machine = StageStateMachine(optimizer=optimizer, store=store, activity_sink=BrokenSink())
        results = run(converse(machine, "s1", ["Hi"]))
        assert results[0].new_stage == ConversationStage.NAME_COLLECTION


# ── Completion ────────────────────────────────────────

class TestCompletion:
    def test_complete_conversation(self, machine, store, activity_sink):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH)
            return await machine.complete_conversation("s1")

        completion = run(scenario())
        assert completion.lead_data.email == "jane@acme.com"
        assert completion.next_steps
        assert 0 <= completion.engagement_score <= 100

        summary = json.loads(completion.conversation_summary)
        assert summary["participant"] == "Jane Doe"
        assert summary["stage_reached"] == "call_to_action"
        assert summary["total_messages"] == len(HAPPY_PATH)
        assert summary["pain_categories"][0] == "process automation"

        lead = run(store.get_lead(completion.lead_id))
        assert lead.session_id == "s1"
        assert lead.final_stage == ConversationStage.CALL_TO_ACTION

        session = run(store.get_session("s1"))
        assert session.current_stage == ConversationStage.COMPLETED
        assert session.lead_id == completion.lead_id

        assert "conversation_completed" in [a["type"] for a in activity_sink.activities]

    def test_engagement_score(self, machine):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH)
            return await machine.complete_conversation("s1")

        # 8 messages (capped at 30) + call-to-action bonus 40 + 2 pain points
        assert run(scenario()).engagement_score == 80


# ── Research merge ────────────────────────────────────

class TestResearchMerge:
    def test_research_overrides_inferred_fields(self, machine):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH[:4])
            return await machine.integrate_research_data("s1", ResearchEnrichment(
                company="Acme Corporation",
                industry="manufacturing",
                role="CTO",
                decision_maker=True,
                confidence=0.85,
            ))

        session = run(scenario())
        lead = session.lead_data
        assert lead.company == "Acme Corporation"
        assert lead.source_of("company") == FieldSource.RESEARCH
        assert lead.role == "CTO"
        assert lead.decision_maker is True
        assert session.research.confidence == 0.85

    def test_missing_research_fields_leave_lead_untouched(self, machine):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH[:4])
            return await machine.integrate_research_data("s1", ResearchEnrichment())

        lead = run(scenario()).lead_data
        assert lead.company == "Acme"
        assert lead.email == "jane@acme.com"

    def test_ai_readiness_keeps_higher_score(self, machine):
        async def scenario():
            results = await converse(machine, "s1", HAPPY_PATH[:4])
            inferred = results[-1].updated_session.lead_data.ai_readiness
            lower = await machine.integrate_research_data("s1", ResearchEnrichment(ai_readiness=inferred - 10))
            after_lower = lower.lead_data.ai_readiness
            higher = await machine.integrate_research_data("s1", ResearchEnrichment(ai_readiness=95))
            return inferred, after_lower, higher.lead_data.ai_readiness

        inferred, after_lower, after_higher = run(scenario())
        assert after_lower == inferred
        assert after_higher == 95

    def test_user_fields_win_over_research(self):
        lead = LeadData()
        lead.set_field("company", "Acme Labs", FieldSource.USER)
        assert lead.merge_field("company", "Acme Inc", FieldSource.RESEARCH) is False
        assert lead.company == "Acme Labs"

    def test_research_wins_over_inferred(self):
        lead = LeadData()
        lead.merge_field("industry", "business", FieldSource.INFERRED)
        assert lead.merge_field("industry", "finance", FieldSource.RESEARCH) is True
        assert lead.merge_field("industry", "business", FieldSource.INFERRED) is False
        assert lead.industry == "finance"


# ── LLM replies and persistence ───────────────────────

class TestReplies:
    def test_llm_reply_used(self, optimizer, store, fake_llm_factory):
        llm = fake_llm_factory(reply="Nice to meet you! What's your name?")
        machine = StageStateMachine(optimizer=optimizer, store=store, llm=llm)
        results = run(converse(machine, "s1", ["Hi"]))

        assert results[0].response == "Nice to meet you! What's your name?"
        assert results[0].error is None
        payload = llm.calls[0]
        assert payload[0]["role"] == "user"
        assert payload[-1] == {"role": "user", "content": "Hi"}

    def test_llm_failure_falls_back_to_template(self, optimizer, store, fake_llm_factory):
        llm = fake_llm_factory(error=UpstreamUnavailable("provider down"))
        machine = StageStateMachine(optimizer=optimizer, store=store, llm=llm)
        results = run(converse(machine, "s1", ["Hi"]))

        assert results[0].new_stage == ConversationStage.NAME_COLLECTION
        assert results[0].error == "upstream_unavailable"
        assert "Could you tell me your name?" in results[0].response

    def test_session_survives_restart(self, optimizer, store):
        first = StageStateMachine(optimizer=optimizer, store=store)
        run(converse(first, "s1", HAPPY_PATH[:2]))

        second = StageStateMachine(optimizer=optimizer, store=store)
        result = run(second.process_message("s1", "jane@acme.com"))
        assert result.new_stage == ConversationStage.BACKGROUND_RESEARCH
        assert result.updated_session.lead_data.name == "Jane Doe"
        assert result.should_trigger_research is True

        with pytest.raises(AlreadyExists):
            run(second.initialize_conversation("s1"))


# ── Memory and concurrency ────────────────────────────

class TestSessionMemory:
    def test_completed_sessions_are_evicted(self, optimizer, store, fake_llm_factory):
        machine = StageStateMachine(optimizer=optimizer, store=store, llm=fake_llm_factory())

        async def scenario():
            for i in range(50):
                await converse(machine, f"s{i}", HAPPY_PATH)
                await machine.complete_conversation(f"s{i}")
            with pytest.raises(InvalidState):
                await machine.process_message("s0", "Hello again")
            return await machine.get_session("s0")

        session = run(scenario())
        assert len(machine) == 0
        assert optimizer.cache.entry_count() == 0
        assert session.current_stage == ConversationStage.COMPLETED

    def test_idle_sessions_are_evicted_and_reloaded(self, machine):
        async def scenario():
            await converse(machine, "idle", HAPPY_PATH[:2])
            await converse(machine, "active", HAPPY_PATH[:2])
            idle = await machine.get_session("idle")
            idle.metadata.last_activity_at -= timedelta(hours=2)

            evicted = machine.evict_idle(3600)
            tracked = len(machine)
            result = await machine.process_message("idle", "jane@acme.com")
            return evicted, tracked, result

        evicted, tracked, result = run(scenario())
        assert evicted == 1
        assert tracked == 1
        assert result.new_stage == ConversationStage.BACKGROUND_RESEARCH
        assert result.updated_session.lead_data.name == "Jane Doe"

    def test_timestamps_are_timezone_aware(self, machine):
        async def scenario():
            await converse(machine, "s1", HAPPY_PATH[:2])
            machine.evict_idle(-1)
            return await machine.get_session("s1")

        session = run(scenario())
        assert session.metadata.created_at.tzinfo is not None
        assert session.metadata.last_activity_at.utcoffset() == timedelta(0)
        assert all(entry.timestamp.tzinfo is not None for entry in session.history)
        assert all(t.timestamp.tzinfo is not None for t in session.metadata.stage_transitions)

    def test_research_waits_for_in_flight_message(self, optimizer, store, fake_llm_factory):
        machine = StageStateMachine(optimizer=optimizer, store=store, llm=fake_llm_factory(delay=0.05))

        async def scenario():
            await machine.initialize_conversation("s1")
            message = asyncio.create_task(machine.process_message("s1", "Hi"))
            await asyncio.sleep(0.01)
            session = await machine.integrate_research_data("s1", ResearchEnrichment(company="Acme Corp"))
            finished_first = message.done()
            await message
            return finished_first, session

        finished_first, session = run(scenario())
        assert finished_first is True
        assert len(session.history) == 2
        assert session.lead_data.company == "Acme Corp"
