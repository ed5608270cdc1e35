"""
Research API Routes for the Lead Qualification Engine.
"""

import logging
from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..services import get_services

logger = logging.getLogger(__name__)

router = APIRouter()


class ResearchRequest(BaseModel):
    email: str = Field(..., max_length=320)
    name: Optional[str] = Field(default=None, max_length=200)
    company_url: Optional[str] = Field(default=None, max_length=500)


@router.post("/research")
async def research_lead(request: ResearchRequest):
    """
    Research a lead identity.

    Cached results are returned as-is; reserved domains short-circuit.
    422 for a malformed email, 503 when the search provider is unreachable.
    """
    services = get_services()
    result = await services.aggregator.research(request.email, request.name, request.company_url)
    return result.to_dict()


@router.get("/research/cached")
async def cached_research(email: str, name: Optional[str] = None, company_url: Optional[str] = None):
    """Cache-only lookup. 404 on a miss."""
    services = get_services()
    result = await services.aggregator.lookup_cached(email, name, company_url)
    return result.to_dict()


@router.get("/research/stats")
async def research_stats():
    return get_services().aggregator.get_stats()
