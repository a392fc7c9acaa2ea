"""
models/response.py
All outgoing response schemas.
"""

from typing import Any, Optional
from pydantic import BaseModel


class NoteResponse(BaseModel):
    """Blocking-mode success envelope."""

    success: bool = True
    data: Any


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    upstream_url: str
    has_api_key: bool
