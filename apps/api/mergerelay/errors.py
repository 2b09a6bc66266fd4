"""Application exception types."""

from __future__ import annotations

from enum import Enum
from typing import Any

from mergerelay.schemas.error import ErrorResponse


class ApiError(Exception):
    """Structured API error that maps directly to response payloads."""

    def __init__(
        self,
        status_code: int,
        message: str,
        *,
        code: str | None = None,
        details: Any | None = None,
        ok: bool | None = None,
    ) -> None:
        self.status_code = status_code
        self.payload = ErrorResponse(ok=ok, error=message, code=code, details=details)
        super().__init__(message)


class ValidationError(ApiError):
    """Missing or malformed request fields."""

    def __init__(self, message: str, *, ok: bool | None = None) -> None:
        super().__init__(400, message, ok=ok)


class RelayError(Exception):
    """Base class for pipeline-stage failures."""

    code = "RELAY_FAILED"


class FetchFailureReason(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    NETWORK_TIMEOUT = "NETWORK_TIMEOUT"
    UNSUPPORTED_REFERENCE = "UNSUPPORTED_REFERENCE"
    PROVIDER_ERROR = "PROVIDER_ERROR"


class FetchError(RelayError):
    code = "FETCH_FAILED"

    def __init__(self, reason: FetchFailureReason, message: str, *, status_code: int | None = None) -> None:
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"{reason.value}: {message}")


class TokenRefreshError(RelayError):
    code = "TOKEN_REFRESH_FAILED"

    def __init__(self, provider: str, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        self.provider = provider
        self.status_code = status_code
        self.body = body
        super().__init__(f"{provider} token refresh failed: {message}")


class MergeError(RelayError):
    code = "MERGE_FAILED"

    def __init__(self, exit_code: int, stderr_tail: str) -> None:
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail
        detail = f"ffmpeg exited with code {exit_code}"
        if stderr_tail:
            detail = f"{detail}: {stderr_tail}"
        super().__init__(detail)


class UploadError(RelayError):
    code = "UPLOAD_FAILED"

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class TooLargeError(UploadError):
    code = "UPLOAD_TOO_LARGE"

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"File too large for simple upload ({size_bytes} bytes > {limit_bytes} bytes)."
        )


class PublishError(RelayError):
    code = "PUBLISH_FAILED"

    def __init__(self, message: str, *, status_code: int | None = None, body: Any = None) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(message)


class ConfigurationError(RelayError):
    code = "CONFIGURATION_MISSING"


class PipelineTransitionError(RelayError):
    code = "PIPELINE_TRANSITION_INVALID"


__all__ = [
    "ApiError",
    "ConfigurationError",
    "FetchError",
    "FetchFailureReason",
    "MergeError",
    "PipelineTransitionError",
    "PublishError",
    "RelayError",
    "TokenRefreshError",
    "TooLargeError",
    "UploadError",
    "ValidationError",
]
