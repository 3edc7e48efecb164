"""
Shared FastAPI dependencies for the route modules.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from backend.app.alerts.broadcast import EmailSender
from backend.app.core.database import get_database

__all__ = ["get_database", "get_email_sender"]


def get_email_sender(request: Request) -> Optional[EmailSender]:
    """Email transport override installed by ``create_app`` (None → default)."""
    return getattr(request.app.state, "email_sender", None)
