"""Merge and publish pipeline orchestration."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from pathlib import Path
import time
from typing import Any
from uuid import uuid4

from mergerelay.core.config import Settings
from mergerelay.core.logging_safety import safe_log_identifier
from mergerelay.domain.pipeline_fsm import PipelineStage, ensure_transition
from mergerelay.domain.providers import Provider
from mergerelay.domain.references import CloudInternalPath
from mergerelay.domain.tempfiles import LocalTempFile, TempFileScope
from mergerelay.errors import ConfigurationError
from mergerelay.repositories.memory import InMemoryStore
from mergerelay.services.credentials import CredentialCache
from mergerelay.services.fetcher import ResourceFetcher
from mergerelay.services.merge import MergeEngine
from mergerelay.services.publish import PublishClient

logger = logging.getLogger(__name__)

_STREAM_CHUNK_BYTES = 64 * 1024


@dataclass(slots=True)
class MergeJob:
    job_id: str
    correlation_id: str
    status: PipelineStage = PipelineStage.IDLE
    video_path: Path | None = None
    audio_path: Path | None = None
    output_path: Path | None = None
    saved_path: str | None = None
    history: list[PipelineStage] = field(default_factory=lambda: [PipelineStage.IDLE])

    def advance(self, stage: PipelineStage) -> None:
        ensure_transition(self.status, stage)
        logger.debug(
            "pipeline.stage job_id=%s prev=%s new=%s",
            self.job_id,
            self.status.value,
            stage.value,
        )
        self.status = stage
        self.history.append(stage)


@dataclass(slots=True)
class MergeOutcome:
    job: MergeJob
    saved_path: str | None
    output: LocalTempFile | None = None
    scope: TempFileScope | None = None
    drained: bool = False


@dataclass(frozen=True, slots=True)
class PublishOutcome:
    publish_id: str
    cached: bool


@dataclass(slots=True)
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


def resolve_destination(dropbox_path: str, now_ms: int) -> str:
    """Use an explicit .mp4 path verbatim, otherwise treat the value as a folder."""
    if dropbox_path.endswith(".mp4"):
        return dropbox_path
    return f"{dropbox_path.rstrip('/')}/merged-{now_ms}.mp4"


class PipelineOrchestrator:
    def __init__(
        self,
        *,
        settings: Settings,
        store: InMemoryStore,
        credentials: CredentialCache,
        fetcher: ResourceFetcher,
        engine: MergeEngine,
        publisher: PublishClient,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings
        self._store = store
        self._credentials = credentials
        self._fetcher = fetcher
        self._engine = engine
        self._publisher = publisher
        self._clock = clock
        self._key_locks: dict[str, _KeyLock] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def _retention_ms(self) -> int:
        return self._settings.idempotency_retention_seconds * 1000

    async def run_merge(
        self,
        *,
        video_url: str,
        audio_url: str,
        dropbox_path: str | None = None,
        no_stream: bool = False,
        correlation_id: str | None = None,
    ) -> MergeOutcome:
        """Fetch, merge and optionally upload.

        In stream mode the returned outcome owns the temp files; the caller must
        drive ``stream`` and then ``finish_stream``. In ack mode every temp file
        has already been released when this returns.
        """
        job = MergeJob(job_id=f"merge-{uuid4()}", correlation_id=correlation_id or "")
        safe_cid = safe_log_identifier(correlation_id, prefix="cid")
        scope = TempFileScope(self._settings.scratch_dir)
        try:
            job.advance(PipelineStage.DOWNLOADING)
            logger.info("download.start job_id=%s correlation_id=%s", job.job_id, safe_cid)
            video, audio = await self._download_pair(video_url, audio_url, scope)
            job.video_path, job.audio_path = video.path, audio.path
            logger.info(
                "download.sizes job_id=%s video_bytes=%s audio_bytes=%s",
                job.job_id,
                video.size(),
                audio.size(),
            )

            job.advance(PipelineStage.MERGING)
            output = await self._engine.merge(video.path, audio.path, scope=scope)
            job.output_path = output.path

            if dropbox_path:
                job.advance(PipelineStage.UPLOADING)
                saved_path = resolve_destination(dropbox_path, self._now_ms())
                logger.info("dropbox.upload.start job_id=%s saved_path=%s", job.job_id, saved_path)
                await self._publisher.upload(output.path, saved_path)
                job.saved_path = saved_path

            if no_stream:
                job.advance(PipelineStage.RETURNING)
                self._cleanup(job, scope)
                return MergeOutcome(job=job, saved_path=job.saved_path)

            job.advance(PipelineStage.STREAMING)
            return MergeOutcome(job=job, saved_path=job.saved_path, output=output, scope=scope.transfer())
        except Exception as exc:
            failed_stage = job.status
            if job.status not in (PipelineStage.CLEANUP, PipelineStage.DONE):
                job.advance(PipelineStage.FAILED)
                self._cleanup(job, scope)
            logger.exception(
                "merge.failed job_id=%s correlation_id=%s stage=%s code=%s",
                job.job_id,
                safe_cid,
                failed_stage.value,
                getattr(exc, "code", type(exc).__name__),
            )
            raise
        finally:
            # No-op once ownership moved to the stream or cleanup already ran.
            scope.release_all()

    async def _download_pair(
        self,
        video_url: str,
        audio_url: str,
        scope: TempFileScope,
    ) -> tuple[LocalTempFile, LocalTempFile]:
        # A failing download cancels its sibling before the scope is cleaned up.
        try:
            async with asyncio.TaskGroup() as group:
                video_task = group.create_task(self._fetcher.fetch(video_url, ".mp4", scope=scope))
                audio_task = group.create_task(self._fetcher.fetch(audio_url, ".mp3", scope=scope))
        except ExceptionGroup as group_exc:
            raise group_exc.exceptions[0] from None
        return video_task.result(), audio_task.result()

    async def stream(self, outcome: MergeOutcome) -> AsyncIterator[bytes]:
        """Yield the merged file in chunks without buffering it in memory."""
        if outcome.output is None:
            return
        with open(outcome.output.path, "rb") as handle:
            while chunk := await asyncio.to_thread(handle.read, _STREAM_CHUNK_BYTES):
                yield chunk
        outcome.drained = True

    def finish_stream(self, outcome: MergeOutcome, *, failed: bool = False) -> None:
        """Release the streamed request's files; safe to call more than once.

        A stream that ended before the last chunk counts as failed.
        """
        job = outcome.job
        if job.status is PipelineStage.DONE:
            return
        if not failed and not outcome.drained:
            logger.info("merge.stream.aborted job_id=%s", job.job_id)
        if failed or not outcome.drained:
            job.advance(PipelineStage.FAILED)
        if outcome.scope is not None:
            self._cleanup(job, outcome.scope)
        else:
            job.advance(PipelineStage.CLEANUP)
            job.advance(PipelineStage.DONE)
        logger.info("cleanup.done job_id=%s", job.job_id)

    def _cleanup(self, job: MergeJob, scope: TempFileScope) -> None:
        job.advance(PipelineStage.CLEANUP)
        scope.release_all()
        job.advance(PipelineStage.DONE)

    async def publish(
        self,
        *,
        dropbox_path: str,
        caption: str,
        privacy: str,
        idempotency_key: str | None = None,
    ) -> PublishOutcome:
        if not self._credentials.is_configured(Provider.TIKTOK):
            raise ConfigurationError("TikTok env not configured")

        if not idempotency_key:
            publish_id = await self._run_publish(dropbox_path=dropbox_path, caption=caption, privacy=privacy)
            return PublishOutcome(publish_id=publish_id, cached=False)

        safe_key = safe_log_identifier(idempotency_key, prefix="idem")
        async with self._hold_key(idempotency_key):
            existing = self._store.get_publish_record(
                idempotency_key,
                now_ms=self._now_ms(),
                retention_ms=self._retention_ms,
            )
            if existing is not None:
                logger.info(
                    "tiktok.post.replayed idempotency_key=%s publish_id=%s",
                    safe_key,
                    safe_log_identifier(existing.publish_id, prefix="pub"),
                )
                return PublishOutcome(publish_id=existing.publish_id, cached=True)

            publish_id = await self._run_publish(dropbox_path=dropbox_path, caption=caption, privacy=privacy)
            record = self._store.record_publish(
                idempotency_key,
                publish_id,
                now_ms=self._now_ms(),
                retention_ms=self._retention_ms,
            )
            logger.info(
                "tiktok.post.recorded idempotency_key=%s publish_id=%s",
                safe_key,
                safe_log_identifier(record.publish_id, prefix="pub"),
            )
            return PublishOutcome(publish_id=record.publish_id, cached=False)

    async def _run_publish(self, *, dropbox_path: str, caption: str, privacy: str) -> str:
        with TempFileScope(self._settings.scratch_dir) as scope:
            local = await self._fetcher.fetch(CloudInternalPath(path=dropbox_path), ".mp4", scope=scope)
            size_bytes = local.size()
            token = await self._credentials.get_access_token(Provider.TIKTOK)
            init = await self._publisher.init_direct_post(
                token.token_value,
                title=caption,
                size_bytes=size_bytes,
                privacy=privacy,
            )
            await self._publisher.upload_chunk(init.upload_url, local.path)
            return init.publish_id

    async def post_status(self, publish_id: str) -> dict[str, Any]:
        token = await self._credentials.get_access_token(Provider.TIKTOK)
        return await self._publisher.get_post_status(token.token_value, publish_id)

    @asynccontextmanager
    async def _hold_key(self, idempotency_key: str):
        entry = self._key_locks.get(idempotency_key)
        if entry is None:
            entry = self._key_locks[idempotency_key] = _KeyLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._key_locks.pop(idempotency_key, None)
