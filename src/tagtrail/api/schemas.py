"""
Request payloads for the public beacon endpoints
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

VideoEventType = Literal[
    "play",
    "pause",
    "ended",
    "progress_25",
    "progress_50",
    "progress_75",
    "progress_100",
]


class LinkClickPayload(BaseModel):
    """
    Body of POST /api/link-click, sent when a visitor taps a link on a
    multi-link page
    """
    model_config = ConfigDict(populate_by_name=True)

    tag_id: str = Field(..., alias="tagId", min_length=1, max_length=255)
    link_url: str = Field(..., alias="linkUrl", min_length=1, max_length=4000)
    link_label: Optional[str] = Field(None, alias="linkLabel", max_length=4000)
    link_icon: Optional[str] = Field(None, alias="linkIcon", max_length=64)


class VideoEventPayload(BaseModel):
    """
    Body of POST /api/video-event, sent by the tracked video player
    """
    model_config = ConfigDict(populate_by_name=True)

    tag_id: str = Field(..., alias="tagId", min_length=1, max_length=255)
    event: VideoEventType
    watch_time: Optional[float] = Field(None, alias="watchTime", ge=0)
