"""
Stage exit predicates.

One named predicate per funnel stage. A predicate looks at the lead
data after the current message has been applied and decides whether
the session may advance one step.
"""

from typing import Callable, Dict

from .domain_analysis import is_personal_email
from .models import ConversationStage, LeadData

StagePredicate = Callable[[LeadData, str], bool]


def has_message(lead: LeadData, message: str) -> bool:
    return bool(message and message.strip())


def has_name(lead: LeadData, message: str) -> bool:
    return bool(lead.name)


def has_email(lead: LeadData, message: str) -> bool:
    return bool(lead.email)


def has_business_email(lead: LeadData, message: str) -> bool:
    return bool(lead.email) and not is_personal_email(lead.email)


def has_pain_point(lead: LeadData, message: str) -> bool:
    return len(lead.pain_points) > 0


def never(lead: LeadData, message: str) -> bool:
    """CALL_TO_ACTION is only left through complete_conversation."""
    return False


def exit_predicates(require_business_email: bool = True) -> Dict[ConversationStage, StagePredicate]:
    """The canonical rule set, keyed by stage."""
    return {
        ConversationStage.GREETING: has_message,
        ConversationStage.NAME_COLLECTION: has_name,
        ConversationStage.EMAIL_CAPTURE: has_business_email if require_business_email else has_email,
        ConversationStage.BACKGROUND_RESEARCH: has_message,
        ConversationStage.PROBLEM_DISCOVERY: has_pain_point,
        ConversationStage.SOLUTION_PRESENTATION: has_message,
        ConversationStage.CALL_TO_ACTION: never,
        ConversationStage.COMPLETED: never,
    }
