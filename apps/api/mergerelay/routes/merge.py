"""Merge route."""

from __future__ import annotations

from functools import partial
import logging
from typing import Annotated
from urllib.parse import quote

from fastapi import APIRouter, Body, Depends, Response
from fastapi.responses import JSONResponse

from mergerelay.core.logging_safety import safe_log_identifier
from mergerelay.core.responses import ReleasingStreamingResponse
from mergerelay.errors import ApiError, ValidationError
from mergerelay.routes.dependencies import get_orchestrator, get_request_correlation_id, require_app_secret
from mergerelay.schemas.error import ErrorResponse
from mergerelay.schemas.merge import MergeAck, MergeRequest
from mergerelay.services.pipeline import PipelineOrchestrator

router = APIRouter(tags=["Merge"])
logger = logging.getLogger(__name__)

MISSING_SOURCES_MESSAGE = "videoUrl and audioUrl are required"


@router.post(
    "/merge",
    responses={
        200: {"model": MergeAck, "content": {"video/mp4": {}}},
        400: {"model": ErrorResponse},
        401: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def merge(
    _: Annotated[None, Depends(require_app_secret)],
    correlation_id: Annotated[str, Depends(get_request_correlation_id)],
    orchestrator: Annotated[PipelineOrchestrator, Depends(get_orchestrator)],
    payload: Annotated[MergeRequest | None, Body()] = None,
) -> Response:
    if payload is None or not payload.video_url or not payload.audio_url:
        raise ValidationError(MISSING_SOURCES_MESSAGE)

    try:
        outcome = await orchestrator.run_merge(
            video_url=payload.video_url,
            audio_url=payload.audio_url,
            dropbox_path=payload.dropbox_path,
            no_stream=payload.no_stream,
            correlation_id=correlation_id,
        )
    except Exception as exc:
        raise ApiError(
            status_code=500,
            message="Merge failed",
            code=getattr(exc, "code", "INTERNAL_ERROR"),
            details=str(exc),
        ) from exc

    headers: dict[str, str] = {}
    if outcome.saved_path:
        # Header values must be latin-1; provider paths may be any unicode.
        headers["X-Dropbox-Path"] = quote(outcome.saved_path, safe="/")

    try:
        if payload.no_stream:
            ack = MergeAck(ok=True, dropbox_path=outcome.saved_path)
            return JSONResponse(content=ack.model_dump(by_alias=True), headers=headers)

        headers["Content-Disposition"] = 'inline; filename="merged.mp4"'
        return ReleasingStreamingResponse(
            orchestrator.stream(outcome),
            media_type="video/mp4",
            headers=headers,
            on_close=partial(orchestrator.finish_stream, outcome),
        )
    except Exception as exc:
        # The stream never started, so nothing else will release its files.
        orchestrator.finish_stream(outcome, failed=True)
        logger.exception(
            "merge.response_failed job_id=%s correlation_id=%s",
            outcome.job.job_id,
            safe_log_identifier(correlation_id, prefix="cid"),
        )
        raise ApiError(
            status_code=500,
            message="Merge failed",
            code="INTERNAL_ERROR",
            details=str(exc),
        ) from exc
