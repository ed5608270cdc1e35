"""
Core Module for the Lead Qualification Engine.

Shared pieces used by every component:
- Typed error taxonomy
- Activity/telemetry sink
- Prometheus business metrics
"""

from .errors import (
    EngineError,
    NotFound,
    AlreadyExists,
    InvalidState,
    LookupTimeout,
    SynthesisFailure,
    UpstreamUnavailable,
    InvalidIdentity,
)
from .activity import ActivitySink, LoggingActivitySink

__all__ = [
    "EngineError",
    "NotFound",
    "AlreadyExists",
    "InvalidState",
    "LookupTimeout",
    "SynthesisFailure",
    "UpstreamUnavailable",
    "InvalidIdentity",
    "ActivitySink",
    "LoggingActivitySink",
]
