"""Application configuration."""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables."""

    dropbox_app_key: str | None = None
    dropbox_app_secret: str | None = None
    dropbox_refresh_token: str | None = None

    tiktok_app_key: str | None = None
    tiktok_app_secret: str | None = None
    tiktok_refresh_token: str | None = None

    app_secret: str | None = None

    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "info"

    scratch_dir: Path = Path("/tmp")
    ffmpeg_path: str = "ffmpeg"
    force_video_reencode: bool = False
    merge_timeout_seconds: float = 1800.0

    idempotency_retention_seconds: int = 6 * 60 * 60
    idempotency_sweep_interval_seconds: int = 30 * 60

    model_config = SettingsConfigDict(extra="ignore")

    @property
    def dropbox_configured(self) -> bool:
        return bool(self.dropbox_app_key and self.dropbox_app_secret and self.dropbox_refresh_token)

    @property
    def tiktok_configured(self) -> bool:
        return bool(self.tiktok_app_key and self.tiktok_app_secret and self.tiktok_refresh_token)

    @property
    def tiktok_partially_configured(self) -> bool:
        values = (self.tiktok_app_key, self.tiktok_app_secret, self.tiktok_refresh_token)
        return any(values) and not all(values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
