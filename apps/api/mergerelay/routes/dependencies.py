"""Dependency wiring for routes."""

from __future__ import annotations

import logging
from secrets import compare_digest
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, Request, Security
from fastapi.security import APIKeyHeader

from mergerelay.core.config import Settings, get_settings
from mergerelay.core.logging_safety import safe_log_identifier
from mergerelay.errors import ApiError
from mergerelay.services.credentials import CredentialCache
from mergerelay.services.pipeline import PipelineOrchestrator

app_secret_scheme = APIKeyHeader(
    name="X-App-Secret",
    auto_error=False,
    scheme_name="appSecret",
)
logger = logging.getLogger(__name__)


def _request_correlation_id(request: Request) -> str:
    existing = getattr(request.state, "correlation_id", None)
    if isinstance(existing, str) and existing:
        return existing

    correlation_id = request.headers.get("X-Correlation-Id")
    if correlation_id:
        request.state.correlation_id = correlation_id
        return correlation_id

    generated = f"req-{uuid4()}"
    request.state.correlation_id = generated
    return generated


def get_request_correlation_id(request: Request) -> str:
    return _request_correlation_id(request)


async def require_app_secret(
    request: Request,
    app_secret: Annotated[str | None, Security(app_secret_scheme)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> None:
    """Validate the shared secret header. Open access when no secret is configured."""
    if not settings.app_secret:
        return

    if app_secret is None or not compare_digest(app_secret, settings.app_secret):
        logger.warning(
            "auth.rejected correlation_id=%s method=%s path=%s reason=invalid_app_secret",
            safe_log_identifier(_request_correlation_id(request), prefix="cid"),
            request.method,
            request.url.path,
        )
        raise ApiError(status_code=401, message="Unauthorized")


def get_credential_cache(request: Request) -> CredentialCache:
    return request.app.state.credentials


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    return request.app.state.orchestrator
