"""
API Module for the Lead Qualification Engine.

FastAPI application with routes for:
- Conversations (staged qualification funnel)
- Lead research
- Prompt optimization
- Guarded live responses
"""

from .main import create_app, app

__all__ = ["create_app", "app"]
