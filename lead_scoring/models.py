"""
Session and lead data models for the qualification funnel.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStage(Enum):
    """Funnel stages, in order. A session only ever moves forward."""
    GREETING = "greeting"
    NAME_COLLECTION = "name_collection"
    EMAIL_CAPTURE = "email_capture"
    BACKGROUND_RESEARCH = "background_research"
    PROBLEM_DISCOVERY = "problem_discovery"
    SOLUTION_PRESENTATION = "solution_presentation"
    CALL_TO_ACTION = "call_to_action"
    COMPLETED = "completed"

    @property
    def index(self) -> int:
        return STAGE_ORDER.index(self)

    def next_stage(self) -> "ConversationStage":
        """The following stage; COMPLETED is its own successor."""
        if self is ConversationStage.COMPLETED:
            return self
        return STAGE_ORDER[self.index + 1]


STAGE_ORDER = list(ConversationStage)


class FieldSource(Enum):
    """Where a lead field value came from. USER always wins."""
    USER = "user"
    INFERRED = "inferred"
    RESEARCH = "research"


SOURCE_PRIORITY = {
    FieldSource.INFERRED: 1,
    FieldSource.RESEARCH: 2,
    FieldSource.USER: 3,
}


class CompanySize(Enum):
    STARTUP = "startup"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    ENTERPRISE = "enterprise"


@dataclass
class LeadData:
    """Accumulated lead attributes. Fields are added or overwritten, never cleared."""

    name: Optional[str] = None
    email: Optional[str] = None
    email_domain: Optional[str] = None
    company: Optional[str] = None
    company_size: Optional[str] = None
    industry: Optional[str] = None
    role: Optional[str] = None
    decision_maker: Optional[bool] = None
    ai_readiness: Optional[int] = None
    pain_points: List[str] = field(default_factory=list)
    sources: Dict[str, str] = field(default_factory=dict)

    def set_field(self, name: str, value: Any, source: FieldSource) -> bool:
        """
        Set a field, ignoring empty values.

        Returns True when the stored value changed.
        """
        if value is None or value == "":
            return False
        changed = getattr(self, name) != value
        setattr(self, name, value)
        self.sources[name] = source.value
        return changed

    def merge_field(self, name: str, value: Any, source: FieldSource) -> bool:
        """
        Set a field unless a stronger source already provided it.

        USER beats RESEARCH beats INFERRED; equal sources overwrite.
        """
        current = self.source_of(name)
        if getattr(self, name) is not None and current is not None:
            if SOURCE_PRIORITY[current] > SOURCE_PRIORITY[source]:
                return False
        return self.set_field(name, value, source)

    def source_of(self, name: str) -> Optional[FieldSource]:
        value = self.sources.get(name)
        return FieldSource(value) if value else None

    def add_pain_points(self, pain_points: List[str]) -> List[str]:
        """Append new pain points in order. Returns the ones actually added."""
        known = {p.lower() for p in self.pain_points}
        added = []
        for point in pain_points:
            if point.lower() not in known:
                self.pain_points.append(point)
                known.add(point.lower())
                added.append(point)
        return added

    def context(self) -> Dict[str, Any]:
        """Lead details as prompt context."""
        return {
            "name": self.name,
            "email": self.email,
            "email_domain": self.email_domain,
            "company": self.company,
            "company_size": self.company_size,
            "industry": self.industry,
            "role": self.role,
            "decision_maker": self.decision_maker,
            "ai_readiness": self.ai_readiness,
            "pain_points": list(self.pain_points),
        }

    def to_dict(self) -> Dict[str, Any]:
        data = self.context()
        data["sources"] = dict(self.sources)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadData":
        return cls(
            name=data.get("name"),
            email=data.get("email"),
            email_domain=data.get("email_domain"),
            company=data.get("company"),
            company_size=data.get("company_size"),
            industry=data.get("industry"),
            role=data.get("role"),
            decision_maker=data.get("decision_maker"),
            ai_readiness=data.get("ai_readiness"),
            pain_points=list(data.get("pain_points") or []),
            sources=dict(data.get("sources") or {}),
        )


@dataclass
class ResearchEnrichment:
    """
    Research facts merged into a session.

    Fixed set of optional fields so merge rules apply field by field.
    """
    company: Optional[str] = None
    company_size: Optional[str] = None
    industry: Optional[str] = None
    website: Optional[str] = None
    role: Optional[str] = None
    decision_maker: Optional[bool] = None
    ai_readiness: Optional[int] = None
    confidence: float = 0.0
    citations: List[Dict[str, Optional[str]]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company": self.company,
            "company_size": self.company_size,
            "industry": self.industry,
            "website": self.website,
            "role": self.role,
            "decision_maker": self.decision_maker,
            "ai_readiness": self.ai_readiness,
            "confidence": self.confidence,
            "citations": [dict(c) for c in self.citations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResearchEnrichment":
        return cls(
            company=data.get("company"),
            company_size=data.get("company_size"),
            industry=data.get("industry"),
            website=data.get("website"),
            role=data.get("role"),
            decision_maker=data.get("decision_maker"),
            ai_readiness=data.get("ai_readiness"),
            confidence=float(data.get("confidence") or 0.0),
            citations=[dict(c) for c in data.get("citations") or []],
        )


@dataclass
class HistoryEntry:
    role: str  # user, assistant
    content: str
    stage: ConversationStage
    timestamp: datetime = field(default_factory=utcnow)

    def to_turn(self) -> Dict[str, str]:
        return {"role": self.role, "content": self.content}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "role": self.role,
            "content": self.content,
            "stage": self.stage.value,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            role=data["role"],
            content=data["content"],
            stage=ConversationStage(data["stage"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class StageTransition:
    from_stage: ConversationStage
    to_stage: ConversationStage
    trigger: str
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_stage.value,
            "to": self.to_stage.value,
            "trigger": self.trigger,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageTransition":
        return cls(
            from_stage=ConversationStage(data["from"]),
            to_stage=ConversationStage(data["to"]),
            trigger=data["trigger"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass
class SessionMetadata:
    total_messages: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    stage_transitions: List[StageTransition] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_messages": self.total_messages,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "stage_transitions": [t.to_dict() for t in self.stage_transitions],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionMetadata":
        return cls(
            total_messages=data.get("total_messages", 0),
            created_at=datetime.fromisoformat(data["created_at"]),
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            stage_transitions=[
                StageTransition.from_dict(t) for t in data.get("stage_transitions", [])
            ],
        )


@dataclass
class Session:
    """One qualification conversation."""
    session_id: str
    current_stage: ConversationStage = ConversationStage.GREETING
    lead_data: LeadData = field(default_factory=LeadData)
    history: List[HistoryEntry] = field(default_factory=list)
    metadata: SessionMetadata = field(default_factory=SessionMetadata)
    research: Optional[ResearchEnrichment] = None
    research_triggered: bool = False
    completed_at: Optional[datetime] = None
    lead_id: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.current_stage is ConversationStage.COMPLETED

    def turns(self) -> List[Dict[str, str]]:
        return [entry.to_turn() for entry in self.history]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "current_stage": self.current_stage.value,
            "lead_data": self.lead_data.to_dict(),
            "history": [h.to_dict() for h in self.history],
            "metadata": self.metadata.to_dict(),
            "research": self.research.to_dict() if self.research else None,
            "research_triggered": self.research_triggered,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "lead_id": self.lead_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        completed_at = data.get("completed_at")
        return cls(
            session_id=data["session_id"],
            current_stage=ConversationStage(data["current_stage"]),
            lead_data=LeadData.from_dict(data.get("lead_data") or {}),
            history=[HistoryEntry.from_dict(h) for h in data.get("history", [])],
            metadata=SessionMetadata.from_dict(data["metadata"]),
            research=ResearchEnrichment.from_dict(data["research"]) if data.get("research") else None,
            research_triggered=data.get("research_triggered", False),
            completed_at=datetime.fromisoformat(completed_at) if completed_at else None,
            lead_id=data.get("lead_id"),
        )


@dataclass
class ProcessResult:
    """Outcome of one process_message call."""
    response: str
    new_stage: ConversationStage
    should_trigger_research: bool
    should_send_follow_up: bool
    updated_session: Session
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "response": self.response,
            "new_stage": self.new_stage.value,
            "should_trigger_research": self.should_trigger_research,
            "should_send_follow_up": self.should_send_follow_up,
            "session": self.updated_session.to_dict(),
            "error": self.error,
        }


@dataclass
class LeadRecord:
    """Snapshot of a lead taken when a conversation completes."""
    session_id: str
    lead_data: LeadData
    engagement_score: int
    final_stage: ConversationStage
    total_interactions: int
    conversation_summary: str
    lead_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "session_id": self.session_id,
            "lead_data": self.lead_data.to_dict(),
            "engagement_score": self.engagement_score,
            "final_stage": self.final_stage.value,
            "total_interactions": self.total_interactions,
            "conversation_summary": self.conversation_summary,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LeadRecord":
        return cls(
            lead_id=data["lead_id"],
            session_id=data["session_id"],
            lead_data=LeadData.from_dict(data["lead_data"]),
            engagement_score=data["engagement_score"],
            final_stage=ConversationStage(data["final_stage"]),
            total_interactions=data["total_interactions"],
            conversation_summary=data["conversation_summary"],
            created_at=datetime.fromisoformat(data["created_at"]),
        )


@dataclass
class CompletionResult:
    lead_data: LeadData
    conversation_summary: str
    next_steps: List[str]
    lead_id: str
    engagement_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lead_id": self.lead_id,
            "lead_data": self.lead_data.to_dict(),
            "conversation_summary": self.conversation_summary,
            "next_steps": list(self.next_steps),
            "engagement_score": self.engagement_score,
        }
