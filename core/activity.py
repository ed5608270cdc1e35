"""
Activity/telemetry sink for the Lead Qualification Engine.

Activities are fire-and-forget: the engine never depends on them for
correctness. Callers go through `log_activity_safely`, which absorbs
sink failures.
"""

import logging
from typing import Any, Dict, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ActivitySink(Protocol):
    """Protocol for activity/telemetry destinations."""

    async def log_activity(
        self,
        type: str,
        title: str,
        status: str = "completed",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        ...


class LoggingActivitySink:
    """Writes activities to the application log."""

    async def log_activity(
        self,
        type: str,
        title: str,
        status: str = "completed",
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.info(f"Activity [{type}] {title} ({status}) {metadata or {}}")


async def log_activity_safely(
    sink: Optional[ActivitySink],
    type: str,
    title: str,
    status: str = "completed",
    metadata: Optional[Dict[str, Any]] = None,
) -> None:
    """Send an activity to the sink; a failing sink is logged and ignored."""
    if sink is None:
        return
    try:
        await sink.log_activity(type=type, title=title, status=status, metadata=metadata)
    except Exception as e:
        logger.warning(f"Activity sink failed for '{type}': {e}")
