"""
Lead Scoring Module for the Lead Qualification Engine.

This module owns the qualification funnel:
- Stage state machine (GREETING ... CALL_TO_ACTION -> COMPLETED)
- Signal extraction (name, email, pain points)
- Email domain analysis (company size, industry, AI readiness)
"""

from .models import (
    ConversationStage,
    FieldSource,
    LeadData,
    ResearchEnrichment,
    Session,
    ProcessResult,
    CompletionResult,
    LeadRecord,
)
from .entity_extractor import EntityExtractor, ExtractedSignals
from .domain_analysis import DomainAnalysis, analyze_email_domain
from .state_machine import StageStateMachine

__all__ = [
    "ConversationStage",
    "FieldSource",
    "LeadData",
    "ResearchEnrichment",
    "Session",
    "ProcessResult",
    "CompletionResult",
    "LeadRecord",
    "EntityExtractor",
    "ExtractedSignals",
    "DomainAnalysis",
    "analyze_email_domain",
    "StageStateMachine",
]
