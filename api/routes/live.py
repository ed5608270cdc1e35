"""
Live response API Routes for the Lead Qualification Engine.

Every call passes the call coalescer first: the same caller asking the
same prompt again inside the minimum interval gets a 429 instead of a
second upstream call.
"""

import logging
import time
from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..services import get_services
from core.errors import UpstreamUnavailable
from llm.call_guard import hash_prompt
from llm.client import USER_ROLE
from llm.generation_config import CallKind, create_generation_config

logger = logging.getLogger(__name__)

router = APIRouter()


class LiveRequest(BaseModel):
    caller_key: str = Field(..., min_length=1, max_length=128)
    prompt: str = Field(..., min_length=1, max_length=4000)
    min_interval_ms: Optional[int] = Field(default=None, ge=0)


class LiveResponse(BaseModel):
    response: str
    prompt_hash: str
    latency_ms: float


@router.post("/live/respond", response_model=LiveResponse)
async def live_respond(request: LiveRequest):
    """Generate a short live response, rate-guarded per (caller, prompt)."""
    services = get_services()
    prompt_hash = hash_prompt(request.prompt)

    decision = services.guard.guard(request.caller_key, prompt_hash, request.min_interval_ms)
    if not decision.allowed:
        retry_after_s = max(1, -(-decision.retry_after_ms // 1000))
        return JSONResponse(
            status_code=429,
            content={
                "error": "rate_limited",
                "detail": "Duplicate request inside the minimum interval",
                "retry_after_ms": decision.retry_after_ms,
            },
            headers={"Retry-After": str(retry_after_s)},
        )

    if services.llm is None:
        raise UpstreamUnavailable("No LLM provider configured")

    start = time.time()
    text = await services.llm.generate(
        [{"role": USER_ROLE, "content": request.prompt}],
        create_generation_config(CallKind.LIVE),
    )
    elapsed = time.time() - start

    return LiveResponse(response=text, prompt_hash=prompt_hash, latency_ms=round(elapsed * 1000, 1))
