"""Liveness and warm-up routes."""

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from mergerelay.routes.dependencies import get_credential_cache, require_app_secret
from mergerelay.schemas.error import ErrorResponse
from mergerelay.schemas.system import WakeResponse
from mergerelay.services.credentials import CredentialCache

router = APIRouter(tags=["System"])


@router.get("/", response_class=PlainTextResponse)
async def liveness() -> str:
    return "OK"


@router.get(
    "/wake",
    response_model=WakeResponse,
    responses={401: {"model": ErrorResponse}},
)
async def wake(
    _: Annotated[None, Depends(require_app_secret)],
    credentials: Annotated[CredentialCache, Depends(get_credential_cache)],
) -> WakeResponse:
    await credentials.warm()
    return WakeResponse(ok=True)
