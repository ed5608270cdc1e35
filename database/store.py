"""
Session store for the Lead Qualification Engine.

Abstracts persistence so the state machine works with either an
in-memory dict or a database backend. The engine never issues raw
queries; it reads and writes whole sessions and lead records.
"""

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lead_scoring.models import LeadRecord, Session

from .repositories import ActivityRepository, LeadRepository, SessionRepository

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Protocol for session and lead persistence."""

    async def get_session(self, session_id: str) -> Optional[Session]:
        ...

    async def put_session(self, session: Session) -> None:
        ...

    async def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        ...

    async def put_lead(self, lead: LeadRecord) -> None:
        ...


class InMemorySessionStore:
    """Process-local store. Keeps serialized snapshots, not live objects."""

    def __init__(self):
        self._sessions: Dict[str, Dict[str, Any]] = {}
        self._leads: Dict[str, Dict[str, Any]] = {}

    async def get_session(self, session_id: str) -> Optional[Session]:
        data = self._sessions.get(session_id)
        return Session.from_dict(data) if data else None

    async def put_session(self, session: Session) -> None:
        self._sessions[session.session_id] = session.to_dict()

    async def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        data = self._leads.get(lead_id)
        return LeadRecord.from_dict(data) if data else None

    async def put_lead(self, lead: LeadRecord) -> None:
        self._leads[lead.lead_id] = lead.to_dict()


class SqlSessionStore:
    """Persistent store backed by SQLAlchemy (PostgreSQL or SQLite)."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_session(self, session_id: str) -> Optional[Session]:
        async with self._session_factory() as db:
            record = await SessionRepository(db).get_by_id(session_id)
            return Session.from_dict(record.data_json) if record else None

    async def put_session(self, session: Session) -> None:
        async with self._session_factory() as db:
            await SessionRepository(db).upsert(
                session_id=session.session_id,
                current_stage=session.current_stage.value,
                total_messages=session.metadata.total_messages,
                data=session.to_dict(),
            )
            await db.commit()

    async def get_lead(self, lead_id: str) -> Optional[LeadRecord]:
        async with self._session_factory() as db:
            row = await LeadRepository(db).get_by_id(lead_id)
            return LeadRecord.from_dict(row.data_json) if row else None

    async def put_lead(self, lead: LeadRecord) -> None:
        async with self._session_factory() as db:
            await LeadRepository(db).create(
                lead_id=lead.lead_id,
                session_id=lead.session_id,
                email=lead.lead_data.email,
                engagement_score=lead.engagement_score,
                final_stage=lead.final_stage.value,
                data_json=lead.to_dict(),
            )
            await db.commit()


class DatabaseActivitySink:
    """Activity sink that appends to the activities table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def log_activity(
        self,
        type: str,
        title: str,
        status: str = "completed",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        async with self._session_factory() as db:
            await ActivityRepository(db).log(
                type=type,
                title=title,
                status=status,
                metadata_json=metadata or {},
            )
            await db.commit()
