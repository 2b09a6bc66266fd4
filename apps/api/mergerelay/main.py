"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager, suppress
import logging
import time

import httpx
from fastapi import FastAPI, Request
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from mergerelay.adapters.dropbox import DropboxClient
from mergerelay.adapters.tiktok import TikTokClient
from mergerelay.core.config import Settings, get_settings
from mergerelay.domain.providers import Provider
from mergerelay.errors import ApiError
from mergerelay.repositories.memory import InMemoryStore
from mergerelay.routes import merge_router, system_router, tiktok_router
from mergerelay.schemas.error import ErrorResponse
from mergerelay.services.credentials import CredentialCache, ProviderTokenSource
from mergerelay.services.fetcher import ResourceFetcher
from mergerelay.services.merge import MergeEngine, MergeOptions
from mergerelay.services.pipeline import PipelineOrchestrator
from mergerelay.services.publish import PublishClient

logger = logging.getLogger(__name__)

_HTTP_TIMEOUT_SECONDS = 30.0
_MAX_REDIRECTS = 5

_BODY_VALIDATION_PATHS: set[tuple[str, str]] = {
    ("POST", "/merge"),
    ("POST", "/tiktok/post"),
}


def _invalid_body_message(exc: RequestValidationError) -> str:
    """Name the first offending field, e.g. ``Invalid noStream: Input should be a valid boolean``."""
    errors = exc.errors()
    if not errors:
        return "Invalid request body"
    first = errors[0]
    if first.get("type") == "json_invalid":
        return "Invalid JSON body"
    field = ".".join(str(part) for part in first.get("loc", ())[1:]) or "body"
    return f"Invalid {field}: {first.get('msg', 'invalid value')}"


def _log_configuration_warnings(settings: Settings) -> None:
    if not settings.dropbox_configured:
        logger.warning(
            "config.missing Dropbox env vars. Set DROPBOX_REFRESH_TOKEN, DROPBOX_APP_KEY, DROPBOX_APP_SECRET."
        )
    if settings.tiktok_partially_configured:
        logger.warning(
            "config.partial TikTok envs partially set. Need TIKTOK_APP_KEY, TIKTOK_APP_SECRET, TIKTOK_REFRESH_TOKEN."
        )
    if not settings.app_secret:
        logger.warning("config.open_access APP_SECRET is not set; gated routes accept every caller")


async def _periodic_publish_record_sweep(store: InMemoryStore, settings: Settings) -> None:
    """Purge idempotency records older than the retention window."""
    retention_ms = settings.idempotency_retention_seconds * 1000
    while True:
        await asyncio.sleep(settings.idempotency_sweep_interval_seconds)
        purged = store.purge_expired_publish_records(now_ms=int(time.time() * 1000), retention_ms=retention_ms)
        if purged:
            logger.info("idempotency.sweep purged=%s", purged)


def _build_orchestrator(
    settings: Settings,
    store: InMemoryStore,
    client: httpx.AsyncClient,
) -> tuple[CredentialCache, PipelineOrchestrator]:
    credentials = CredentialCache(store=store, client=client, settings=settings)
    dropbox = DropboxClient(client, ProviderTokenSource(credentials, Provider.DROPBOX))
    orchestrator = PipelineOrchestrator(
        settings=settings,
        store=store,
        credentials=credentials,
        fetcher=ResourceFetcher(client=client, dropbox=dropbox),
        engine=MergeEngine(
            MergeOptions(
                ffmpeg_path=settings.ffmpeg_path,
                force_video_reencode=settings.force_video_reencode,
                timeout_seconds=settings.merge_timeout_seconds,
            )
        ),
        publisher=PublishClient(dropbox=dropbox, tiktok=TikTokClient(client)),
    )
    return credentials, orchestrator


@asynccontextmanager
async def _lifespan(app: FastAPI):
    settings = get_settings()
    _log_configuration_warnings(settings)
    settings.scratch_dir.mkdir(parents=True, exist_ok=True)

    client = httpx.AsyncClient(
        timeout=_HTTP_TIMEOUT_SECONDS,
        max_redirects=_MAX_REDIRECTS,
        transport=app.state.http_transport,
    )
    app.state.http_client = client
    app.state.credentials, app.state.orchestrator = _build_orchestrator(settings, app.state.store, client)

    sweeper = asyncio.create_task(_periodic_publish_record_sweep(app.state.store, settings))
    logger.info("server.ready port=%s scratch_dir=%s", settings.port, settings.scratch_dir)
    try:
        yield
    finally:
        sweeper.cancel()
        with suppress(asyncio.CancelledError):
            await sweeper
        await client.aclose()
        logger.info("server.shutdown")


def create_app(*, transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    app = FastAPI(title="Merge Relay", version="1.0.0", lifespan=_lifespan)
    app.state.store = InMemoryStore()
    app.state.http_transport = transport

    @app.exception_handler(ApiError)
    async def handle_api_error(_, exc: ApiError) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.payload.model_dump(mode="json", exclude_none=True),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Malformed bodies on the pipeline routes get the plain {error} 400 shape.
        route = request.scope.get("route")
        route_path = getattr(route, "path", request.url.path)
        if (request.method.upper(), route_path) in _BODY_VALIDATION_PATHS:
            payload = ErrorResponse(error=_invalid_body_message(exc))
            return JSONResponse(status_code=400, content=payload.model_dump(exclude_none=True))

        return await request_validation_exception_handler(request, exc)

    app.include_router(system_router)
    app.include_router(merge_router)
    app.include_router(tiktok_router)

    return app


app = create_app()
