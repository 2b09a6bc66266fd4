"""External OAuth providers and their credential sources."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from mergerelay.core.config import Settings


class Provider(str, Enum):
    DROPBOX = "dropbox"
    TIKTOK = "tiktok"


_TOKEN_URLS: dict[Provider, str] = {
    Provider.DROPBOX: "https://api.dropboxapi.com/oauth2/token",
    Provider.TIKTOK: "https://open.tiktokapis.com/v2/oauth/token/",
}


@dataclass(frozen=True, slots=True)
class ProviderCredentials:
    provider: Provider
    app_key: str
    app_secret: str
    refresh_token: str
    token_url: str


def provider_credentials(settings: Settings, provider: Provider) -> ProviderCredentials | None:
    """Return the refresh credentials for a provider, or None when it is not configured."""
    if provider is Provider.DROPBOX:
        if not settings.dropbox_configured:
            return None
        app_key, app_secret, refresh_token = (
            settings.dropbox_app_key,
            settings.dropbox_app_secret,
            settings.dropbox_refresh_token,
        )
    else:
        if not settings.tiktok_configured:
            return None
        app_key, app_secret, refresh_token = (
            settings.tiktok_app_key,
            settings.tiktok_app_secret,
            settings.tiktok_refresh_token,
        )

    return ProviderCredentials(
        provider=provider,
        app_key=app_key,
        app_secret=app_secret,
        refresh_token=refresh_token,
        token_url=_TOKEN_URLS[provider],
    )


def configured_providers(settings: Settings) -> list[Provider]:
    return [provider for provider in Provider if provider_credentials(settings, provider) is not None]
