"""
External search provider boundary.

The aggregator runs three lookups (company, person, role) against a
`SearchProvider`. `HttpSearchProvider` talks to a JSON search API:

    POST {api_url}  {"query": "...", "num": 5}
    -> {"results": [{"url": "...", "title": "...", "snippet": "..."}]}
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

from core.errors import UpstreamUnavailable
from .models import Citation

logger = logging.getLogger(__name__)


@dataclass
class SearchHit:
    """Raw text plus citations returned by one lookup."""
    text: str
    citations: List[Citation] = field(default_factory=list)


@runtime_checkable
class SearchProvider(Protocol):
    """Protocol for external search backends."""

    async def search_company(self, domain: str) -> SearchHit:
        ...

    async def search_person(self, name: Optional[str], domain: str) -> SearchHit:
        ...

    async def search_role(self, name: Optional[str], domain: str) -> SearchHit:
        ...


class HttpSearchProvider:
    """Search provider backed by an HTTP JSON search API."""

    def __init__(
        self,
        api_url: str,
        api_key: Optional[str] = None,
        max_results: int = 5,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the provider.

        Args:
            api_url: Search endpoint
            api_key: Sent as X-API-Key when set
            max_results: Results requested per query
            timeout: HTTP timeout in seconds (lookups also have their own timeout)
            transport: httpx transport override (e.g. httpx.MockTransport)
        """
        self.api_url = api_url
        self.api_key = api_key
        self.max_results = max_results
        self.timeout = timeout
        self.transport = transport

    async def _search(self, query: str) -> SearchHit:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-Key"] = self.api_key

        try:
            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    self.api_url,
                    json={"query": query, "num": self.max_results},
                    headers=headers,
                    timeout=self.timeout,
                )
        except httpx.NetworkError as e:
            logger.warning(f"Search provider unreachable: {e}")
            raise UpstreamUnavailable(f"Search provider unreachable: {e}") from e

        if response.status_code >= 500:
            raise UpstreamUnavailable(f"Search provider returned {response.status_code}")
        response.raise_for_status()

        return self._parse(response.json())

    @staticmethod
    def _parse(data: Dict[str, Any]) -> SearchHit:
        lines = []
        citations = []
        for item in data.get("results", []):
            title = item.get("title")
            snippet = item.get("snippet") or item.get("description") or ""
            url = item.get("url") or item.get("link")
            if title or snippet:
                lines.append(f"{title or ''}: {snippet}".strip(": "))
            if url:
                citations.append(Citation(uri=url, title=title, description=snippet or None))
        return SearchHit(text="\n".join(lines), citations=citations)

    async def search_company(self, domain: str) -> SearchHit:
        return await self._search(f"{domain} company overview industry size")

    async def search_person(self, name: Optional[str], domain: str) -> SearchHit:
        who = name or "leadership"
        return await self._search(f"{who} {domain} LinkedIn profile")

    async def search_role(self, name: Optional[str], domain: str) -> SearchHit:
        who = name or "contact"
        return await self._search(f"{who} {domain} job title role")
