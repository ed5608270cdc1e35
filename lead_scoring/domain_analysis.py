"""
Email domain analysis.

Infers company size, industry, decision-maker status and an AI
readiness score (0-100) from an email address, without external calls.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .models import CompanySize

logger = logging.getLogger(__name__)


PERSONAL_EMAIL_DOMAINS = {
    "gmail.com", "googlemail.com", "yahoo.com", "hotmail.com", "outlook.com",
    "live.com", "aol.com", "icloud.com", "me.com", "mail.com", "protonmail.com",
    "proton.me", "gmx.com", "yandex.com",
}

DECISION_MAKER_PREFIXES = [
    "ceo", "cto", "cfo", "coo", "president", "vp", "director", "head",
    "manager", "lead", "founder", "owner", "principal", "partner",
]

# Industry hints by domain keyword
INDUSTRY_KEYWORDS = {
    "finance": ["bank", "capital", "finance", "invest", "pay", "fund"],
    "healthcare": ["health", "med", "clinic", "pharma", "care", "bio"],
    "retail": ["shop", "store", "retail", "market"],
    "manufacturing": ["motors", "steel", "industr", "factory", "auto"],
    "technology": ["tech", "soft", "data", "cloud", "labs", "digital"],
}

SIZE_READINESS_ADJUSTMENT = {
    CompanySize.STARTUP.value: 20,
    CompanySize.SMALL.value: 10,
    CompanySize.MEDIUM.value: 5,
    CompanySize.LARGE.value: -5,
    CompanySize.ENTERPRISE.value: -10,
}


@dataclass
class DomainAnalysis:
    domain: str
    company_name: str
    company_size: str
    industry: str
    decision_maker: bool
    ai_readiness: int
    is_personal: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "company_name": self.company_name,
            "company_size": self.company_size,
            "industry": self.industry,
            "decision_maker": self.decision_maker,
            "ai_readiness": self.ai_readiness,
            "is_personal": self.is_personal,
        }


def email_domain(email: str) -> Optional[str]:
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def is_personal_email(email: str) -> bool:
    return email_domain(email) in PERSONAL_EMAIL_DOMAINS


def company_name_from_domain(domain: str) -> str:
    """'acme-robotics.co.uk' -> 'Acme Robotics'"""
    label = domain.split(".")[0]
    return " ".join(part.capitalize() for part in label.replace("_", "-").split("-") if part)


def infer_company_size(domain: str) -> str:
    if any(k in domain for k in ("enterprise", "global")):
        return CompanySize.ENTERPRISE.value
    if any(k in domain for k in ("corp", "inc", "llc")):
        return CompanySize.MEDIUM.value
    return CompanySize.SMALL.value


def infer_industry(domain: str) -> str:
    label = domain.split(".")[0]
    tld = domain.rsplit(".", 1)[-1]
    for industry, keywords in INDUSTRY_KEYWORDS.items():
        if any(k in label for k in keywords):
            return industry
    if tld in ("io", "ai", "dev"):
        return "technology"
    return "business"


def is_decision_maker(email: str) -> bool:
    prefix = email.split("@")[0].lower()
    return any(p in prefix for p in DECISION_MAKER_PREFIXES)


def calculate_ai_readiness(company_size: str, industry: str) -> int:
    score = 50
    score += SIZE_READINESS_ADJUSTMENT.get(company_size, 0)
    if industry == "technology":
        score += 15
    return max(0, min(100, score))


def analyze_email_domain(email: str) -> Optional[DomainAnalysis]:
    """
    Analyze an email address.

    Args:
        email: Email address

    Returns:
        DomainAnalysis, or None if the address has no domain
    """
    domain = email_domain(email)
    if domain is None:
        return None

    personal = domain in PERSONAL_EMAIL_DOMAINS
    company_size = CompanySize.STARTUP.value if personal else infer_company_size(domain)
    industry = "personal" if personal else infer_industry(domain)

    analysis = DomainAnalysis(
        domain=domain,
        company_name=company_name_from_domain(domain),
        company_size=company_size,
        industry=industry,
        decision_maker=is_decision_maker(email),
        ai_readiness=calculate_ai_readiness(company_size, industry),
        is_personal=personal,
    )
    logger.debug(f"Domain analysis for {domain}: {analysis.to_dict()}")
    return analysis
