"""Short-video publish routes."""

from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Header
from fastapi.responses import JSONResponse

from mergerelay.core.config import Settings, get_settings
from mergerelay.core.logging_safety import safe_log_identifier
from mergerelay.errors import ApiError, ValidationError
from mergerelay.routes.dependencies import get_orchestrator, require_app_secret
from mergerelay.schemas.error import ErrorResponse
from mergerelay.schemas.publish import TikTokPostRequest, TikTokPostResponse
from mergerelay.services.pipeline import PipelineOrchestrator

router = APIRouter(prefix="/tiktok", tags=["TikTok"])
logger = logging.getLogger(__name__)

MISSING_POST_FIELDS_MESSAGE = "dropboxPath and caption are required"
NOT_CONFIGURED_MESSAGE = "TikTok env not configured"
MISSING_PUBLISH_ID_MESSAGE = "publish_id required"


def _publish_failure(exc: Exception) -> ApiError:
    return ApiError(
        status_code=500,
        message=str(exc) or type(exc).__name__,
        code=getattr(exc, "code", "INTERNAL_ERROR"),
        ok=False,
    )


@router.post(
    "/post",
    response_model=TikTokPostResponse,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def post_video(
    _: Annotated[None, Depends(require_app_secret)],
    settings: Annotated[Settings, Depends(get_settings)],
    orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)],
    payload: Annotated[TikTokPostRequest | None, Body()] = None,
    idempotency_key: Annotated[str | None, Header(alias="Idempotency-Key")] = None,
) -> TikTokPostResponse:
    if payload is None or not payload.dropbox_path or not payload.caption:
        raise ValidationError(MISSING_POST_FIELDS_MESSAGE)
    if not settings.tiktok_configured:
        raise ValidationError(NOT_CONFIGURED_MESSAGE)

    try:
        outcome = await orchestrator.publish(
            dropbox_path=payload.dropbox_path,
            caption=payload.caption,
            privacy=payload.privacy,
            idempotency_key=idempotency_key,
        )
    except Exception as exc:
        logger.exception(
            "tiktok.post.failed idempotency_key=%s code=%s",
            safe_log_identifier(idempotency_key, prefix="idem"),
            getattr(exc, "code", type(exc).__name__),
        )
        raise _publish_failure(exc) from exc

    return TikTokPostResponse(ok=True, publish_id=outcome.publish_id, cached=True if outcome.cached else None)


@router.get(
    "/status",
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def post_status(
    _: Annotated[None, Depends(require_app_secret)],
    orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)],
    publish_id: str | None = None,
) -> JSONResponse:
    if not publish_id:
        raise ValidationError(MISSING_PUBLISH_ID_MESSAGE)

    try:
        status_payload = await orchestrator.post_status(publish_id)
    except Exception as exc:
        logger.exception(
            "tiktok.status.failed publish_id=%s code=%s",
            safe_log_identifier(publish_id, prefix="pub"),
            getattr(exc, "code", type(exc).__name__),
        )
        raise _publish_failure(exc) from exc

    return JSONResponse(content={**status_payload, "ok": True})
