"""
Role detection and normalization.

Priority: explicit role > person role. Company descriptions are never
read for a title.
"""

from typing import Optional, Tuple

from .models import ResearchResult

ROLE_MAP = {
    "ceo": "CEO",
    "chief executive officer": "CEO",
    "cto": "CTO",
    "chief technology officer": "CTO",
    "cfo": "CFO",
    "chief financial officer": "CFO",
    "coo": "COO",
    "chief operating officer": "COO",
    "founder": "Founder",
    "co-founder": "Co-Founder",
    "cofounder": "Co-Founder",
    "owner": "Owner",
    "president": "President",
    "director": "Director",
    "manager": "Manager",
    "lead": "Lead",
    "head": "Head",
    "vp": "VP",
    "vice president": "VP",
}

DEFAULT_ROLE = "Professional"


def normalize_role(value: Optional[str]) -> str:
    """'chief technology officer' -> 'CTO'; unknown titles are capitalized."""
    if not value or not value.strip():
        return DEFAULT_ROLE
    role = value.strip()
    mapped = ROLE_MAP.get(role.lower())
    if mapped:
        return mapped
    return role[:1].upper() + role[1:]


def detect_role(result: ResearchResult) -> Tuple[str, float]:
    """Role and confidence for a research result."""
    if result.role and result.role not in (DEFAULT_ROLE, "Unknown"):
        return normalize_role(result.role), 0.9
    if result.person.role:
        return normalize_role(result.person.role), 0.8
    return DEFAULT_ROLE, 0.3
