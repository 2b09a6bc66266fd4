"""Refresh-token exchange with per-provider caching."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
import time

import httpx

from mergerelay.adapters.base import AccessTokenSource
from mergerelay.core.config import Settings
from mergerelay.domain.providers import Provider, configured_providers, provider_credentials
from mergerelay.errors import ConfigurationError, TokenRefreshError
from mergerelay.repositories.memory import AccessToken, InMemoryStore

logger = logging.getLogger(__name__)

_EXPIRY_SKEW_MS = 60_000
_DEFAULT_EXPIRES_IN_SECONDS = 14_400
_TOKEN_TIMEOUT_SECONDS = 15.0


class CredentialCache:
    """Hands out access tokens, refreshing them only when they are near expiry.

    Concurrent misses for the same provider are collapsed into one exchange:
    callers queue on a per-provider lock and re-check the cache once inside.
    """

    def __init__(
        self,
        *,
        store: InMemoryStore,
        client: httpx.AsyncClient,
        settings: Settings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._client = client
        self._settings = settings
        self._clock = clock
        self._locks: dict[Provider, asyncio.Lock] = {provider: asyncio.Lock() for provider in Provider}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def is_configured(self, provider: Provider) -> bool:
        return provider_credentials(self._settings, provider) is not None

    def invalidate(self, provider: Provider) -> None:
        """Forget the cached token so the next call performs a fresh exchange."""
        self._store.drop_access_token(provider)
        logger.info("token.invalidated provider=%s", provider.value)

    async def get_access_token(self, provider: Provider) -> AccessToken:
        cached = self._store.get_access_token(provider)
        if cached is not None and cached.is_fresh(self._now_ms(), skew_ms=_EXPIRY_SKEW_MS):
            return cached

        async with self._locks[provider]:
            cached = self._store.get_access_token(provider)
            if cached is not None and cached.is_fresh(self._now_ms(), skew_ms=_EXPIRY_SKEW_MS):
                return cached
            return await self._refresh(provider)

    async def warm(self) -> dict[Provider, bool]:
        """Pre-warm every configured provider; one provider failing never fails the others."""
        providers = configured_providers(self._settings)
        results = await asyncio.gather(
            *(self.get_access_token(provider) for provider in providers),
            return_exceptions=True,
        )
        outcome: dict[Provider, bool] = {}
        for provider, result in zip(providers, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "token.warm_failed provider=%s reason=%s",
                    provider.value,
                    type(result).__name__,
                )
                outcome[provider] = False
            else:
                outcome[provider] = True
        return outcome

    async def _refresh(self, provider: Provider) -> AccessToken:
        credentials = provider_credentials(self._settings, provider)
        if credentials is None:
            raise ConfigurationError(f"{provider.value} credentials are not configured")

        try:
            response = await self._client.post(
                credentials.token_url,
                data={"grant_type": "refresh_token", "refresh_token": credentials.refresh_token},
                auth=(credentials.app_key, credentials.app_secret),
                timeout=_TOKEN_TIMEOUT_SECONDS,
            )
        except httpx.TimeoutException as exc:
            logger.warning("token.refresh_failed provider=%s reason=timeout", provider.value)
            raise TokenRefreshError(provider.value, "token endpoint timed out") from exc
        except httpx.HTTPError as exc:
            logger.warning("token.refresh_failed provider=%s reason=%s", provider.value, type(exc).__name__)
            raise TokenRefreshError(provider.value, str(exc) or type(exc).__name__) from exc

        body = _response_body(response)
        if not response.is_success:
            logger.warning(
                "token.refresh_failed provider=%s status=%s body=%s",
                provider.value,
                response.status_code,
                body,
            )
            raise TokenRefreshError(
                provider.value,
                f"token endpoint returned {response.status_code}",
                status_code=response.status_code,
                body=body,
            )

        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not access_token:
            raise TokenRefreshError(
                provider.value,
                "token endpoint response has no access_token",
                status_code=response.status_code,
                body=body,
            )

        expires_in = body.get("expires_in") or _DEFAULT_EXPIRES_IN_SECONDS
        token = AccessToken(
            token_value=str(access_token),
            expires_at_ms=self._now_ms() + int(expires_in) * 1000,
        )
        self._store.put_access_token(provider, token)
        logger.info("token.refreshed provider=%s expires_in=%s", provider.value, expires_in)
        return token


def _response_body(response: httpx.Response):
    try:
        return response.json()
    except ValueError:
        return response.text


class ProviderTokenSource(AccessTokenSource):
    """Binds the cache to one provider for adapters that only need a bearer token."""

    def __init__(self, cache: CredentialCache, provider: Provider) -> None:
        self._cache = cache
        self._provider = provider

    async def bearer_token(self) -> str:
        token = await self._cache.get_access_token(self._provider)
        return token.token_value

    def invalidate(self) -> None:
        self._cache.invalidate(self._provider)
