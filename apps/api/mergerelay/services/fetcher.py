"""Remote resource acquisition into scratch files."""

from __future__ import annotations

import asyncio
import logging

import httpx

from mergerelay.adapters.base import ProviderApiError
from mergerelay.adapters.dropbox import DropboxClient
from mergerelay.domain.references import (
    CloudInternalPath,
    CloudSharedLink,
    HttpUrl,
    ResourceReference,
    classify_reference,
    describe_reference,
    infer_extension,
)
from mergerelay.domain.tempfiles import LocalTempFile, TempFileScope
from mergerelay.errors import FetchError, FetchFailureReason, TokenRefreshError

logger = logging.getLogger(__name__)

_DOWNLOAD_TIMEOUT = httpx.Timeout(30.0, read=300.0)
_DOWNLOAD_CHUNK_BYTES = 1024 * 1024
_DOWNLOAD_HEADERS = {"User-Agent": "curl/8"}


class ResourceFetcher:
    def __init__(self, *, client: httpx.AsyncClient, dropbox: DropboxClient) -> None:
        self._client = client
        self._dropbox = dropbox

    async def fetch(
        self,
        ref: ResourceReference | str,
        fallback_extension: str,
        *,
        scope: TempFileScope,
    ) -> LocalTempFile:
        """Download a resource into a new temp file owned by ``scope``."""
        if isinstance(ref, str):
            ref = classify_reference(ref)

        kind = describe_reference(ref)
        try:
            match ref:
                case CloudSharedLink(url=url):
                    handle = await self._fetch_shared_link(url, fallback_extension, scope)
                case CloudInternalPath(path=path):
                    handle = await self._fetch_internal_path(path, fallback_extension, scope)
                case HttpUrl(url=url):
                    handle = await self._fetch_url(url, fallback_extension, scope)
        except ProviderApiError as exc:
            raise _provider_fetch_error(exc) from exc
        except TokenRefreshError as exc:
            raise FetchError(FetchFailureReason.UNAUTHORIZED, str(exc), status_code=exc.status_code) from exc
        except httpx.TooManyRedirects as exc:
            raise FetchError(FetchFailureReason.NETWORK_TIMEOUT, "too many redirects") from exc
        except httpx.TimeoutException as exc:
            raise FetchError(FetchFailureReason.NETWORK_TIMEOUT, "download timed out") from exc
        except httpx.HTTPError as exc:
            raise FetchError(FetchFailureReason.NETWORK_TIMEOUT, str(exc) or type(exc).__name__) from exc

        logger.info("fetch.done kind=%s bytes=%s path=%s", kind, handle.size(), handle.path.name)
        return handle

    async def _fetch_shared_link(self, url: str, fallback_extension: str, scope: TempFileScope) -> LocalTempFile:
        # The provider returns the whole payload in one response.
        shared = await self._dropbox.get_shared_link_file(url)
        handle = scope.create(infer_extension(shared.name, url, fallback=fallback_extension))
        handle.mark_in_use()
        await asyncio.to_thread(handle.path.write_bytes, shared.content)
        if not shared.content:
            raise FetchError(FetchFailureReason.PROVIDER_ERROR, "shared link returned an empty file")
        return handle

    async def _fetch_internal_path(self, path: str, fallback_extension: str, scope: TempFileScope) -> LocalTempFile:
        temporary = await self._dropbox.get_temporary_link(path)
        extension = infer_extension(temporary.name, path, fallback=fallback_extension)
        return await self._stream_to_file(temporary.link, extension, scope)

    async def _fetch_url(self, url: str, fallback_extension: str, scope: TempFileScope) -> LocalTempFile:
        return await self._stream_to_file(url, infer_extension(url, fallback=fallback_extension), scope)

    async def _stream_to_file(self, url: str, extension: str, scope: TempFileScope) -> LocalTempFile:
        async with self._client.stream(
            "GET",
            url,
            headers=_DOWNLOAD_HEADERS,
            follow_redirects=True,
            timeout=_DOWNLOAD_TIMEOUT,
        ) as response:
            if not response.is_success:
                raise FetchError(
                    _reason_for_status(response.status_code),
                    f"GET returned {response.status_code}",
                    status_code=response.status_code,
                )

            handle = scope.create(extension)
            handle.mark_in_use()
            written = 0
            with open(handle.path, "wb") as out:
                async for chunk in response.aiter_bytes(_DOWNLOAD_CHUNK_BYTES):
                    await asyncio.to_thread(out.write, chunk)
                    written += len(chunk)

        if written == 0:
            raise FetchError(FetchFailureReason.PROVIDER_ERROR, "downloaded file is empty")
        return handle


def _reason_for_status(status_code: int) -> FetchFailureReason:
    if status_code in (401, 403):
        return FetchFailureReason.UNAUTHORIZED
    if status_code in (404, 410):
        return FetchFailureReason.NOT_FOUND
    if status_code in (408, 504):
        return FetchFailureReason.NETWORK_TIMEOUT
    return FetchFailureReason.PROVIDER_ERROR


def _provider_fetch_error(exc: ProviderApiError) -> FetchError:
    summary = exc.error_summary
    if exc.status_code == 409 and "not_found" in summary:
        reason = FetchFailureReason.NOT_FOUND
    else:
        reason = _reason_for_status(exc.status_code)
    message = f"{exc.endpoint} returned {exc.status_code}"
    if summary:
        message = f"{message}: {summary}"
    return FetchError(reason, message, status_code=exc.status_code)
