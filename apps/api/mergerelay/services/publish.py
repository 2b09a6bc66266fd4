"""Cloud upload and short-video publish protocols."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any

import httpx

from mergerelay.adapters.base import ProviderApiError
from mergerelay.adapters.dropbox import DropboxClient
from mergerelay.adapters.tiktok import DirectPostInit, TikTokClient
from mergerelay.core.logging_safety import safe_log_identifier
from mergerelay.errors import PublishError, TooLargeError, UploadError

logger = logging.getLogger(__name__)

SIMPLE_UPLOAD_LIMIT_BYTES = 150 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class UploadResult:
    path: str
    file_id: str | None
    size_bytes: int


class PublishClient:
    def __init__(
        self,
        *,
        dropbox: DropboxClient,
        tiktok: TikTokClient,
        upload_limit_bytes: int = SIMPLE_UPLOAD_LIMIT_BYTES,
    ) -> None:
        self._dropbox = dropbox
        self._tiktok = tiktok
        self._upload_limit_bytes = upload_limit_bytes

    async def upload(self, local_path: Path, destination_path: str) -> UploadResult:
        size = local_path.stat().st_size
        if size > self._upload_limit_bytes:
            raise TooLargeError(size, self._upload_limit_bytes)

        try:
            content = await asyncio.to_thread(local_path.read_bytes)
            metadata = await self._dropbox.upload(content, destination_path)
        except ProviderApiError as exc:
            raise UploadError(
                f"Dropbox upload failed ({exc.status_code}): {exc.error_summary}",
                status_code=exc.status_code,
                body=exc.body,
            ) from exc
        except httpx.HTTPError as exc:
            raise UploadError(f"Dropbox upload failed: {str(exc) or type(exc).__name__}") from exc

        result = UploadResult(
            path=metadata.get("path_display") or destination_path,
            file_id=metadata.get("id"),
            size_bytes=size,
        )
        logger.info("dropbox.upload.done id=%s bytes=%s", result.file_id, size)
        return result

    async def init_direct_post(
        self,
        access_token: str,
        *,
        title: str,
        size_bytes: int,
        privacy: str,
    ) -> DirectPostInit:
        try:
            init = await self._tiktok.init_direct_post(
                access_token,
                title=title,
                size_bytes=size_bytes,
                privacy=privacy,
            )
        except (ProviderApiError, httpx.HTTPError) as exc:
            raise _publish_error("init", exc) from exc
        logger.info(
            "tiktok.init.done publish_id=%s bytes=%s privacy=%s",
            safe_log_identifier(init.publish_id, prefix="pub"),
            size_bytes,
            privacy,
        )
        return init

    async def upload_chunk(self, upload_url: str, local_path: Path) -> None:
        try:
            await self._tiktok.upload_chunk(upload_url, local_path)
        except (ProviderApiError, httpx.HTTPError) as exc:
            raise _publish_error("upload", exc) from exc

    async def get_post_status(self, access_token: str, publish_id: str) -> dict[str, Any]:
        try:
            return await self._tiktok.get_post_status(access_token, publish_id)
        except (ProviderApiError, httpx.HTTPError) as exc:
            raise _publish_error("status", exc) from exc


def _publish_error(step: str, exc: Exception) -> PublishError:
    if isinstance(exc, ProviderApiError):
        return PublishError(
            f"TikTok {step} failed ({exc.status_code}): {exc.error_summary}",
            status_code=exc.status_code,
            body=exc.body,
        )
    return PublishError(f"TikTok {step} failed: {str(exc) or type(exc).__name__}")
