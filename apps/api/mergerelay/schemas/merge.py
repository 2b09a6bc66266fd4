"""Merge API schemas."""

from pydantic import BaseModel, ConfigDict, Field


class MergeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    video_url: str | None = Field(default=None, alias="videoUrl")
    audio_url: str | None = Field(default=None, alias="audioUrl")
    dropbox_path: str | None = Field(default=None, alias="dropboxPath")
    no_stream: bool = Field(default=False, alias="noStream")


class MergeAck(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ok: bool
    dropbox_path: str | None = Field(default=None, alias="dropboxPath")
