"""
Conversation API Routes for the Lead Qualification Engine.

Drives the staged funnel: start a session, post visitor messages,
merge research and complete the conversation into a lead record.
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..services import get_services
from lead_scoring.models import ResearchEnrichment
from research.dispatcher import ResearchJob

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class StartConversationRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, max_length=128)


class MessageRequest(BaseModel):
    message: str = Field(default="", max_length=4000)


class MessageResponse(BaseModel):
    response: str
    new_stage: str
    should_trigger_research: bool
    should_send_follow_up: bool
    research_queued: bool = False
    error: Optional[str] = None
    session: Dict[str, Any]


class EnrichmentRequest(BaseModel):
    company: Optional[str] = None
    company_size: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    role: Optional[str] = None
    decision_maker: Optional[bool] = None
    ai_readiness: Optional[int] = Field(default=None, ge=0, le=100)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    citations: List[Dict[str, Optional[str]]] = []


class CompletionResponse(BaseModel):
    lead_id: str
    lead_data: Dict[str, Any]
    conversation_summary: str
    next_steps: List[str]
    engagement_score: int


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/conversations", status_code=201)
async def start_conversation(request: Optional[StartConversationRequest] = None):
    """Create a session at GREETING. 409 if the id is taken."""
    services = get_services()
    session_id = (request.session_id if request else None) or str(uuid.uuid4())

    session = await services.state_machine.initialize_conversation(session_id)
    return session.to_dict()


@router.get("/conversations/{session_id}")
async def get_conversation(session_id: str):
    services = get_services()
    session = await services.state_machine.get_session(session_id)
    return session.to_dict()


@router.post("/conversations/{session_id}/messages", response_model=MessageResponse)
async def post_message(session_id: str, request: MessageRequest):
    """
    Process one visitor message.

    When the session first reaches background research, a research job
    is queued; its result is merged into the session asynchronously.
    """
    services = get_services()
    result = await services.state_machine.process_message(session_id, request.message)

    research_queued = False
    if result.should_trigger_research:
        lead = result.updated_session.lead_data
        research_queued = services.dispatcher.submit(ResearchJob(
            session_id=session_id,
            email=lead.email,
            name=lead.name,
        ))

    return MessageResponse(
        response=result.response,
        new_stage=result.new_stage.value,
        should_trigger_research=result.should_trigger_research,
        should_send_follow_up=result.should_send_follow_up,
        research_queued=research_queued,
        error=result.error,
        session=result.updated_session.to_dict(),
    )


@router.post("/conversations/{session_id}/research")
async def integrate_research(session_id: str, request: EnrichmentRequest):
    """Merge externally obtained research into the session's lead data."""
    services = get_services()
    enrichment = ResearchEnrichment.from_dict(request.model_dump())
    session = await services.state_machine.integrate_research_data(session_id, enrichment)
    return session.to_dict()


@router.post("/conversations/{session_id}/complete", response_model=CompletionResponse)
async def complete_conversation(session_id: str):
    """Close the conversation and persist the lead record."""
    services = get_services()
    completion = await services.state_machine.complete_conversation(session_id)
    logger.info(f"Conversation {session_id} completed as lead {completion.lead_id}")
    return CompletionResponse(**completion.to_dict())
