"""
Research data models.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from lead_scoring.models import ResearchEnrichment


@dataclass
class Citation:
    uri: str
    title: Optional[str] = None
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"uri": self.uri, "title": self.title, "description": self.description}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Citation":
        return cls(uri=data["uri"], title=data.get("title"), description=data.get("description"))


@dataclass
class CompanyContext:
    name: Optional[str] = None
    domain: Optional[str] = None
    industry: Optional[str] = None
    size: Optional[str] = None
    summary: Optional[str] = None
    website: Optional[str] = None
    linkedin: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "name": self.name,
            "domain": self.domain,
            "industry": self.industry,
            "size": self.size,
            "summary": self.summary,
            "website": self.website,
            "linkedin": self.linkedin,
        }


@dataclass
class PersonContext:
    full_name: Optional[str] = None
    role: Optional[str] = None
    seniority: Optional[str] = None
    profile_url: Optional[str] = None
    company: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {
            "full_name": self.full_name,
            "role": self.role,
            "seniority": self.seniority,
            "profile_url": self.profile_url,
            "company": self.company,
        }


def dedupe_citations(citations: List[Citation]) -> List[Citation]:
    """Drop citations with an already-seen uri, keeping first-seen order."""
    seen = set()
    unique = []
    for citation in citations:
        if citation.uri in seen:
            continue
        seen.add(citation.uri)
        unique.append(citation)
    return unique


@dataclass
class ResearchResult:
    """Synthesized research about one lead identity."""
    company: CompanyContext
    person: PersonContext
    role: str
    confidence: float
    citations: List[Citation] = field(default_factory=list)
    lookups_succeeded: int = 0
    fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "company": self.company.to_dict(),
            "person": self.person.to_dict(),
            "role": self.role,
            "confidence": self.confidence,
            "citations": [c.to_dict() for c in self.citations],
            "lookups_succeeded": self.lookups_succeeded,
            "fallback": self.fallback,
        }

    def to_enrichment(self) -> ResearchEnrichment:
        """Fixed-shape enrichment for merging into a session."""
        role = self.role if self.role and self.role not in ("Professional", "Unknown") else None
        return ResearchEnrichment(
            company=self.company.name,
            company_size=self.company.size,
            industry=self.company.industry.lower() if self.company.industry else None,
            website=self.company.website,
            role=role,
            decision_maker=_is_decision_role(role) if role else None,
            confidence=self.confidence,
            citations=[c.to_dict() for c in self.citations],
        )


DECISION_ROLES = {"CEO", "CTO", "CFO", "COO", "Founder", "Co-Founder", "Director", "VP", "Head", "Owner", "President"}


def _is_decision_role(role: str) -> bool:
    return role in DECISION_ROLES


@dataclass
class ResearchRecord:
    """Cached research for one identity key. Replaced on expiry, never updated."""
    identity_key: str
    result: ResearchResult
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
