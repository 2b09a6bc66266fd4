"""Short-video publish API schemas."""

from pydantic import BaseModel, ConfigDict, Field

DEFAULT_PRIVACY_LEVEL = "SELF_ONLY"


class TikTokPostRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    dropbox_path: str | None = Field(default=None, alias="dropboxPath")
    caption: str | None = None
    privacy: str = DEFAULT_PRIVACY_LEVEL


class TikTokPostResponse(BaseModel):
    ok: bool
    publish_id: str
    cached: bool | None = None
