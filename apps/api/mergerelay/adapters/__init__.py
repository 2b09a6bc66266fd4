"""External provider adapters."""

from .base import AccessTokenSource, ProviderApiError
from .dropbox import DropboxClient, SharedLinkFile, TemporaryLink
from .tiktok import DirectPostInit, TikTokClient

__all__ = [
    "AccessTokenSource",
    "DirectPostInit",
    "DropboxClient",
    "ProviderApiError",
    "SharedLinkFile",
    "TemporaryLink",
    "TikTokClient",
]
