"""TikTok Content Posting API adapter (direct post, single chunk)."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import httpx

from mergerelay.adapters.base import ProviderApiError

_BASE_URL = "https://open.tiktokapis.com/v2/post/publish"
_INIT_TIMEOUT_SECONDS = 30.0
_STATUS_TIMEOUT_SECONDS = 15.0
_UPLOAD_TIMEOUT_SECONDS = 10 * 60.0
_UPLOAD_CHUNK_BYTES = 1024 * 1024


@dataclass(frozen=True, slots=True)
class DirectPostInit:
    publish_id: str
    upload_url: str


class TikTokClient:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def init_direct_post(
        self,
        access_token: str,
        *,
        title: str,
        size_bytes: int,
        privacy: str,
    ) -> DirectPostInit:
        endpoint = "video/init"
        response = await self._client.post(
            f"{_BASE_URL}/video/init/",
            headers={"Authorization": f"Bearer {access_token}"},
            json={
                "post_info": {"title": title, "privacy_level": privacy},
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": size_bytes,
                    "chunk_size": size_bytes,
                    "total_chunk_count": 1,
                },
            },
            timeout=_INIT_TIMEOUT_SECONDS,
        )
        payload = _checked_payload(endpoint, response)
        data = payload.get("data") or {}
        publish_id = data.get("publish_id")
        upload_url = data.get("upload_url")
        if not publish_id or not upload_url:
            raise ProviderApiError(endpoint, response.status_code, payload)
        return DirectPostInit(publish_id=str(publish_id), upload_url=str(upload_url))

    async def upload_chunk(self, upload_url: str, local_path: Path) -> None:
        """PUT the whole file as one chunk with an explicit Content-Range."""
        size = os.path.getsize(local_path)
        response = await self._client.put(
            upload_url,
            headers={
                "Content-Type": "video/mp4",
                "Content-Length": str(size),
                "Content-Range": f"bytes 0-{size - 1}/{size}",
            },
            content=_iter_file(local_path),
            timeout=_UPLOAD_TIMEOUT_SECONDS,
        )
        if not response.is_success:
            raise ProviderApiError("video/upload", response.status_code, response.text[:2000])

    async def get_post_status(self, access_token: str, publish_id: str) -> dict[str, Any]:
        response = await self._client.get(
            f"{_BASE_URL}/status/",
            params={"publish_id": publish_id},
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=_STATUS_TIMEOUT_SECONDS,
        )
        return _checked_payload("status", response)


async def _iter_file(path: Path) -> AsyncIterator[bytes]:
    with open(path, "rb") as handle:
        while chunk := await asyncio.to_thread(handle.read, _UPLOAD_CHUNK_BYTES):
            yield chunk


def _checked_payload(endpoint: str, response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError:
        raise ProviderApiError(endpoint, response.status_code, response.text[:2000]) from None
    if not response.is_success or not isinstance(payload, dict):
        raise ProviderApiError(endpoint, response.status_code, payload)
    error = payload.get("error")
    if isinstance(error, dict) and error.get("code") not in (None, "ok"):
        raise ProviderApiError(endpoint, response.status_code, payload)
    return payload


__all__ = ["DirectPostInit", "TikTokClient"]
