"""Provider adapter interfaces."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any


class ProviderApiError(Exception):
    """Raised when a provider API answers with a non-success status."""

    def __init__(self, endpoint: str, status_code: int, body: Any) -> None:
        self.endpoint = endpoint
        self.status_code = status_code
        self.body = body
        super().__init__(f"{endpoint} returned {status_code}")

    @property
    def error_summary(self) -> str:
        if isinstance(self.body, dict):
            summary = self.body.get("error_summary") or self.body.get("error_description")
            if summary:
                return str(summary)
            error = self.body.get("error")
            if isinstance(error, dict):
                return str(error.get("message") or error.get("code") or "")
            if error:
                return str(error)
        return str(self.body or "")[:500]


class AccessTokenSource(ABC):
    """Anything able to hand out a bearer token for a provider."""

    @abstractmethod
    async def bearer_token(self) -> str:
        """Return a currently valid bearer token."""

    def invalidate(self) -> None:
        """Discard any cached token after the provider rejected it."""


__all__ = ["AccessTokenSource", "ProviderApiError"]
