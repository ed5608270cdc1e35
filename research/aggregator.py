"""
Research Aggregator.

Enriches a lead identity with company/person facts:
1. Cache lookup by identity (email|name|company_url)
2. Reserved/test domains answered without external calls
3. Three concurrent lookups (company, person, role), each with its own timeout
4. Citations of the successful lookups merged and de-duplicated
5. One synthesis call over the raw text
6. Domain-derived fallback (confidence 0.3) when synthesis is not possible
"""

import asyncio
import json
import logging
import re
from typing import Dict, List, Optional, Tuple

from core.errors import (
    EngineError,
    InvalidIdentity,
    LookupTimeout,
    NotFound,
    SynthesisFailure,
    UpstreamUnavailable,
)
from core.metrics import record_cache, record_lookup
from lead_scoring.domain_analysis import company_name_from_domain
from llm.client import LLMClient, USER_ROLE
from llm.generation_config import CallKind, create_generation_config
from llm.prompt_templates import PromptTemplates

from .cache import ResearchCache, identity_key
from .models import Citation, CompanyContext, PersonContext, ResearchResult, dedupe_citations
from .role_detector import DEFAULT_ROLE, detect_role, normalize_role
from .search_provider import SearchHit, SearchProvider

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.?[A-Za-z0-9-]*$")

RESERVED_DOMAINS = {
    "example.com", "example.org", "example.net", "test.com",
    "test", "invalid", "localhost", "example",
}
RESERVED_CITATION = Citation(
    uri="https://www.iana.org/domains/reserved",
    title="IANA-managed Reserved Domains",
    description="Reserved and test domains do not belong to a real company.",
)

# Confidence by number of successful lookups; never decreases
CONFIDENCE_BY_SUCCESSES = {0: 0.3, 1: 0.55, 2: 0.70, 3: 0.85}
FALLBACK_CONFIDENCE = 0.3
RESERVED_CONFIDENCE = 0.95


def is_reserved_domain(domain: str) -> bool:
    if domain in RESERVED_DOMAINS:
        return True
    tld = domain.rsplit(".", 1)[-1]
    return tld in ("test", "invalid", "localhost", "example")


class ResearchAggregator:
    """
    Fan-out/fan-in research over a search provider.

    Partial lookup failures are absorbed; only a wholly unreachable
    provider is surfaced (UpstreamUnavailable).
    """

    def __init__(
        self,
        cache: ResearchCache,
        search: Optional[SearchProvider] = None,
        llm: Optional[LLMClient] = None,
        lookup_timeout: float = 4.0,
        synthesis_timeout: float = 20.0,
    ):
        """
        Initialize the aggregator.

        Args:
            cache: Research cache shared for the process lifetime
            search: Search provider; None skips lookups (fallback result)
            llm: LLM client for synthesis; None skips synthesis (fallback result)
            lookup_timeout: Per-lookup timeout in seconds
            synthesis_timeout: Synthesis call timeout in seconds
        """
        self.cache = cache
        self.search = search
        self.llm = llm
        self.lookup_timeout = lookup_timeout
        self.synthesis_timeout = synthesis_timeout
        self.research_config = create_generation_config(CallKind.RESEARCH)

    # ── Public API ────────────────────────────────────────────────────

    async def research(
        self,
        email: str,
        name: Optional[str] = None,
        company_url: Optional[str] = None,
    ) -> ResearchResult:
        """
        Research a lead identity.

        Args:
            email: Lead email (required)
            name: Lead name
            company_url: Company website, if known

        Returns:
            ResearchResult

        Raises:
            InvalidIdentity: empty or malformed email
            UpstreamUnavailable: every lookup failed because the provider is unreachable
        """
        email = self._validate_email(email)
        key = identity_key(email, name, company_url)

        record = self.cache.get(key)
        if record is not None:
            record_cache("research", True)
            logger.info(f"Using cached research for {email}")
            return record.result
        record_cache("research", False)

        domain = email.rsplit("@", 1)[1]

        if is_reserved_domain(domain):
            logger.info(f"Reserved domain {domain}, skipping external lookups")
            result = self._reserved_result(domain, name, company_url)
            self.cache.put(key, result)
            return result

        if self.search is None:
            logger.warning("No search provider configured, using domain fallback")
            result = self._fallback_result(domain, name, company_url, [], 0)
            self.cache.put(key, result)
            return result

        logger.info(f"Starting lead research for {email}")
        outcomes = await asyncio.gather(
            self._run_lookup("company", self.search.search_company(domain)),
            self._run_lookup("person", self.search.search_person(name, domain)),
            self._run_lookup("role", self.search.search_role(name, domain)),
        )

        hits = [(lookup, hit) for lookup, hit, _ in outcomes if hit is not None]
        errors = [error for _, _, error in outcomes if error is not None]

        if not hits and all(isinstance(e, UpstreamUnavailable) for e in errors):
            raise UpstreamUnavailable(
                "Search provider unreachable for all lookups", {"email": email}
            )

        citations = dedupe_citations([c for _, hit in hits for c in hit.citations])

        try:
            result = await self._synthesize(email, name, domain, company_url, hits, citations)
        except SynthesisFailure as e:
            logger.warning(f"Research synthesis failed for {email}: {e.message}")
            result = self._fallback_result(domain, name, company_url, citations, len(hits))

        if not result.fallback:
            result.role, _ = detect_role(result)
            if result.person.role:
                result.person.role = normalize_role(result.person.role)

        self.cache.put(key, result)
        logger.info(
            f"Lead research completed for {email}: {len(hits)}/3 lookups, "
            f"confidence {result.confidence}"
        )
        return result

    async def lookup_cached(
        self,
        email: str,
        name: Optional[str] = None,
        company_url: Optional[str] = None,
    ) -> ResearchResult:
        """Return cached research only. Raises NotFound on a miss."""
        key = identity_key(self._validate_email(email), name, company_url)
        record = self.cache.get(key)
        if record is None:
            raise NotFound(f"No cached research for {email}", {"identity": key})
        return record.result

    def get_stats(self) -> Dict:
        return self.cache.get_stats()

    # ── Lookups ───────────────────────────────────────────────────────

    async def _run_lookup(self, lookup: str, call) -> Tuple[str, Optional[SearchHit], Optional[Exception]]:
        try:
            hit = await asyncio.wait_for(call, timeout=self.lookup_timeout)
        except asyncio.TimeoutError:
            error = LookupTimeout(f"{lookup} lookup timed out after {self.lookup_timeout}s")
            logger.warning(error.message)
            record_lookup(lookup, "timeout")
            return lookup, None, error
        except Exception as e:
            logger.warning(f"{lookup} lookup failed: {e}")
            record_lookup(lookup, "unavailable" if isinstance(e, UpstreamUnavailable) else "error")
            return lookup, None, e

        record_lookup(lookup, "ok")
        return lookup, hit, None

    # ── Synthesis ─────────────────────────────────────────────────────

    async def _synthesize(
        self,
        email: str,
        name: Optional[str],
        domain: str,
        company_url: Optional[str],
        hits: List[Tuple[str, SearchHit]],
        citations: List[Citation],
    ) -> ResearchResult:
        if not hits:
            raise SynthesisFailure("No lookup succeeded")
        if self.llm is None:
            raise SynthesisFailure("No LLM configured for synthesis")

        raw_text = "\n\n".join(f"[{lookup}]\n{hit.text}" for lookup, hit in hits)
        prompt = PromptTemplates.build_research_prompt(email, name, domain, raw_text)

        try:
            text = await asyncio.wait_for(
                self.llm.generate([{"role": USER_ROLE, "content": prompt}], self.research_config),
                timeout=self.synthesis_timeout,
            )
        except asyncio.TimeoutError:
            raise SynthesisFailure(f"Synthesis timed out after {self.synthesis_timeout}s")
        except EngineError as e:
            raise SynthesisFailure(f"Synthesis call failed: {e.message}") from e

        data = self._parse_json(text)
        company_data = data.get("company") or {}
        person_data = data.get("person") or {}
        if not isinstance(company_data, dict) or not isinstance(person_data, dict):
            raise SynthesisFailure("Synthesis output has the wrong shape")

        company = CompanyContext(
            name=company_data.get("name") or company_name_from_domain(domain),
            domain=company_data.get("domain") or domain,
            industry=company_data.get("industry"),
            size=company_data.get("size"),
            summary=company_data.get("summary"),
            website=company_data.get("website") or company_url or f"https://{domain}",
            linkedin=company_data.get("linkedin"),
        )
        person = PersonContext(
            full_name=person_data.get("full_name") or name,
            role=person_data.get("role"),
            seniority=person_data.get("seniority"),
            profile_url=person_data.get("profile_url"),
            company=person_data.get("company") or company.name,
        )

        return ResearchResult(
            company=company,
            person=person,
            role=data.get("role") or person.role or DEFAULT_ROLE,
            confidence=CONFIDENCE_BY_SUCCESSES[len(hits)],
            citations=citations,
            lookups_succeeded=len(hits),
        )

    @staticmethod
    def _parse_json(text: str) -> Dict:
        match = re.search(r"\{.*\}", text or "", re.DOTALL)
        if not match:
            raise SynthesisFailure("Synthesis returned no JSON object")
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError as e:
            raise SynthesisFailure(f"Synthesis returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise SynthesisFailure("Synthesis JSON is not an object")
        return data

    # ── Canned results ────────────────────────────────────────────────

    @staticmethod
    def _validate_email(email: str) -> str:
        email = (email or "").strip().lower()
        if not email:
            raise InvalidIdentity("Email is required for research")
        if not EMAIL_PATTERN.match(email):
            raise InvalidIdentity(f"Malformed email: {email}", {"email": email})
        return email

    @staticmethod
    def _reserved_result(domain: str, name: Optional[str], company_url: Optional[str]) -> ResearchResult:
        return ResearchResult(
            company=CompanyContext(
                name=company_name_from_domain(domain),
                domain=domain,
                website=company_url,
                summary=f"{domain} is a reserved test domain",
            ),
            person=PersonContext(full_name=name, company=domain),
            role=DEFAULT_ROLE,
            confidence=RESERVED_CONFIDENCE,
            citations=[RESERVED_CITATION],
        )

    @staticmethod
    def _fallback_result(
        domain: str,
        name: Optional[str],
        company_url: Optional[str],
        citations: List[Citation],
        successes: int,
    ) -> ResearchResult:
        """Minimal structural guess from the email domain alone."""
        return ResearchResult(
            company=CompanyContext(
                name=company_name_from_domain(domain),
                domain=domain,
                website=company_url or f"https://{domain}",
                summary=f"Company associated with {domain}",
            ),
            person=PersonContext(full_name=name, company=domain),
            role=DEFAULT_ROLE,
            confidence=FALLBACK_CONFIDENCE,
            citations=citations,
            lookups_succeeded=successes,
            fallback=True,
        )
