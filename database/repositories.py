"""
Repository classes for the data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from .models import SessionRecord, LeadRecordRow, ActivityRecord, utcnow

logger = logging.getLogger(__name__)


class SessionRepository:
    """Data access for session snapshots."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, session_id: str) -> Optional[SessionRecord]:
        result = await self.session.execute(
            select(SessionRecord).where(SessionRecord.id == session_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        session_id: str,
        current_stage: str,
        total_messages: int,
        data: Dict[str, Any],
    ) -> SessionRecord:
        record = await self.get_by_id(session_id)
        if record is None:
            record = SessionRecord(id=session_id)
            self.session.add(record)
        record.current_stage = current_stage
        record.total_messages = total_messages
        record.data_json = data
        record.updated_at = utcnow()
        await self.session.flush()
        return record

    async def count_by_stage(self) -> Dict[str, int]:
        result = await self.session.execute(
            select(SessionRecord.current_stage, func.count()).group_by(SessionRecord.current_stage)
        )
        return {stage: count for stage, count in result.all()}


class LeadRepository:
    """Data access for completed-lead snapshots."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, lead_id: str, **kwargs) -> LeadRecordRow:
        lead = LeadRecordRow(id=lead_id, **kwargs)
        self.session.add(lead)
        await self.session.flush()
        logger.info(f"Lead created: {lead.id}")
        return lead

    async def get_by_id(self, lead_id: str) -> Optional[LeadRecordRow]:
        result = await self.session.execute(
            select(LeadRecordRow).where(LeadRecordRow.id == lead_id)
        )
        return result.scalar_one_or_none()

    async def list_recent(self, limit: int = 50) -> List[LeadRecordRow]:
        result = await self.session.execute(
            select(LeadRecordRow).order_by(LeadRecordRow.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())


class ActivityRepository:
    """Append-only activity log."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(self, type: str, title: str, **kwargs) -> ActivityRecord:
        entry = ActivityRecord(type=type, title=title, **kwargs)
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def get_recent(self, limit: int = 100) -> List[ActivityRecord]:
        result = await self.session.execute(
            select(ActivityRecord).order_by(ActivityRecord.created_at.desc()).limit(limit)
        )
        return list(result.scalars().all())
