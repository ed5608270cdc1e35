"""
API Routes for the Lead Qualification Engine.
"""

from . import conversation, research, optimize, live

__all__ = ["conversation", "research", "optimize", "live"]
