"""Dropbox HTTP API adapter."""

from __future__ import annotations

from dataclasses import dataclass
import json
from typing import Any

import httpx

from mergerelay.adapters.base import AccessTokenSource, ProviderApiError

_API_URL = "https://api.dropboxapi.com/2"
_CONTENT_URL = "https://content.dropboxapi.com/2"
_API_TIMEOUT_SECONDS = 30.0
_CONTENT_TIMEOUT_SECONDS = 600.0


@dataclass(frozen=True, slots=True)
class SharedLinkFile:
    content: bytes
    name: str | None


@dataclass(frozen=True, slots=True)
class TemporaryLink:
    link: str
    name: str | None


class DropboxClient:
    """Thin wrapper over the Dropbox v2 endpoints used by the relay."""

    def __init__(self, client: httpx.AsyncClient, tokens: AccessTokenSource) -> None:
        self._client = client
        self._tokens = tokens

    async def _headers(self, api_arg: dict[str, Any] | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {await self._tokens.bearer_token()}"}
        if api_arg is not None:
            headers["Dropbox-API-Arg"] = json.dumps(api_arg)
        return headers

    async def get_shared_link_file(self, url: str) -> SharedLinkFile:
        endpoint = "sharing/get_shared_link_file"
        response = await self._client.post(
            f"{_CONTENT_URL}/{endpoint}",
            headers=await self._headers({"url": url}),
            timeout=_CONTENT_TIMEOUT_SECONDS,
        )
        self._raise_for_status(endpoint, response)
        metadata = _parse_api_result(response.headers.get("Dropbox-API-Result"))
        return SharedLinkFile(content=response.content, name=metadata.get("name"))

    async def get_temporary_link(self, path: str) -> TemporaryLink:
        endpoint = "files/get_temporary_link"
        response = await self._client.post(
            f"{_API_URL}/{endpoint}",
            headers=await self._headers(),
            json={"path": path},
            timeout=_API_TIMEOUT_SECONDS,
        )
        self._raise_for_status(endpoint, response)
        payload = response.json()
        link = payload.get("link")
        if not link:
            raise ProviderApiError(endpoint, response.status_code, {"error_summary": "missing link"})
        metadata = payload.get("metadata") or {}
        return TemporaryLink(link=link, name=metadata.get("name"))

    async def upload(self, content: bytes, destination_path: str) -> dict[str, Any]:
        """Create a new file; never overwrites an existing one."""
        endpoint = "files/upload"
        headers = await self._headers(
            {"path": destination_path, "mode": "add", "autorename": False, "mute": True}
        )
        headers["Content-Type"] = "application/octet-stream"
        response = await self._client.post(
            f"{_CONTENT_URL}/{endpoint}",
            headers=headers,
            content=content,
            timeout=_CONTENT_TIMEOUT_SECONDS,
        )
        self._raise_for_status(endpoint, response)
        return response.json()

    def _raise_for_status(self, endpoint: str, response: httpx.Response) -> None:
        if response.is_success:
            return
        if response.status_code == 401:
            self._tokens.invalidate()
        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        raise ProviderApiError(endpoint, response.status_code, body)


def _parse_api_result(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


__all__ = ["DropboxClient", "SharedLinkFile", "TemporaryLink"]
