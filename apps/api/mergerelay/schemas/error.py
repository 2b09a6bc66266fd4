"""API error response schemas."""

from typing import Any

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    ok: bool | None = None
    error: str
    code: str | None = None
    details: Any | None = None
