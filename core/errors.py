"""
Error taxonomy for the Lead Qualification Engine.

Every whole-operation failure surfaces as one of these typed errors.
The `kind` string is stable and is what callers (and the HTTP layer)
use to decide whether to retry, restart the session, or degrade.
"""

from typing import Any, Dict, Optional


class EngineError(Exception):
    """Base class for all engine errors."""

    kind = "engine_error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.kind,
            "detail": self.message,
            "retryable": self.retryable,
        }


class NotFound(EngineError):
    """Unknown session or identity. Caller should re-initialize."""

    kind = "not_found"


class AlreadyExists(EngineError):
    """Session id is already tracked."""

    kind = "already_exists"


class InvalidState(EngineError):
    """Illegal transition attempt, e.g. a message on a completed session."""

    kind = "invalid_state"


class LookupTimeout(EngineError):
    """A single research lookup exceeded its timeout (non-fatal)."""

    kind = "lookup_timeout"


class SynthesisFailure(EngineError):
    """Research synthesis failed or returned unparseable output (non-fatal)."""

    kind = "synthesis_failure"


class UpstreamUnavailable(EngineError):
    """LLM or search provider wholly unreachable. Never retried internally."""

    kind = "upstream_unavailable"
    retryable = True


class InvalidIdentity(EngineError):
    """Research identity failed validation (e.g. empty email)."""

    kind = "invalid_identity"
