"""
SQLAlchemy ORM models for the Lead Qualification Engine.

Sessions and leads are stored as JSON snapshots; the engine only reads
and writes them whole through the session store.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Integer, DateTime, Text, JSON, Index
from sqlalchemy.orm import DeclarativeBase


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"

    id = Column(String(64), primary_key=True)
    current_stage = Column(String(30), nullable=False)
    total_messages = Column(Integer, default=0)
    data_json = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_session_stage", "current_stage"),
    )


class LeadRecordRow(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    session_id = Column(String(64), nullable=False, index=True)
    email = Column(String(255), nullable=True)
    engagement_score = Column(Integer, default=0)
    final_stage = Column(String(30), nullable=False)
    data_json = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class ActivityRecord(Base):
    __tablename__ = "activities"

    id = Column(String(36), primary_key=True, default=_uuid)
    type = Column(String(50), nullable=False)  # conversation_started, stage_transition, ...
    title = Column(Text, nullable=False)
    status = Column(String(20), default="completed")
    metadata_json = Column(JSON, default=dict)
    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
