"""
Prompt optimizer API Routes for the Lead Qualification Engine.
"""

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from ..services import get_services
from llm.context_optimizer import MIN_TOKEN_BUDGET

logger = logging.getLogger(__name__)

router = APIRouter()


# ── Request / Response Models ─────────────────────────────────────

class Turn(BaseModel):
    role: Literal["user", "model", "assistant"]
    content: str


class OptimizeRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=128)
    system_prompt: str
    history: List[Turn] = []
    token_budget: Optional[int] = Field(default=None, ge=MIN_TOKEN_BUDGET)


class OptimizeResponse(BaseModel):
    payload: List[Dict[str, str]]
    estimated_tokens: int
    used_cache: bool
    summary: Optional[str] = None


# ── Endpoints ─────────────────────────────────────────────────────

@router.post("/optimize", response_model=OptimizeResponse)
async def optimize(request: OptimizeRequest):
    """Build a budget-compliant payload for the given history."""
    services = get_services()
    result = await services.optimizer.optimize(
        history=[turn.model_dump() for turn in request.history],
        system_prompt=request.system_prompt,
        session_id=request.session_id,
        token_budget=request.token_budget,
    )
    return OptimizeResponse(**result.to_dict())


@router.get("/optimize/stats")
async def optimizer_stats() -> Dict[str, Any]:
    return get_services().optimizer.get_stats()
