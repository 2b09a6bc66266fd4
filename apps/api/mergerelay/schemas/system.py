"""Liveness and warm-up schemas."""

from pydantic import BaseModel


class WakeResponse(BaseModel):
    ok: bool
