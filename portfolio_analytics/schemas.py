"""
Pydantic schemas for request/response models.
"""

from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, StrictStr, field_validator

ELEMENT_MAX_LENGTH = 255

Number = Union[StrictInt, StrictFloat]


class PageViewPayload(BaseModel):
    """Body of POST /api/track/page-view."""
    model_config = ConfigDict(populate_by_name=True)

    path: StrictStr = Field(..., min_length=1, description="The visited route")
    referrer: Optional[str] = None
    user_agent: Optional[str] = Field(None, alias="userAgent")

    @field_validator("referrer", "user_agent", mode="before")
    @classmethod
    def drop_non_string(cls, v):
        return v if isinstance(v, str) else None


class ClickPayload(BaseModel):
    """Body of POST /api/track/click."""
    path: StrictStr = Field(..., min_length=1)
    element: StrictStr = Field(..., min_length=1)
    x: Number
    y: Number

    @field_validator("element")
    @classmethod
    def truncate_element(cls, v: str) -> str:
        return v[:ELEMENT_MAX_LENGTH]


class CommentNotificationPayload(BaseModel):
    """Body of POST /api/notifications/comment."""
    model_config = ConfigDict(populate_by_name=True)

    author_name: StrictStr = Field(..., min_length=1, alias="authorName")
    author_email: StrictStr = Field(..., min_length=1, alias="authorEmail")
    content: StrictStr = Field(..., min_length=1)
    post_slug: StrictStr = Field(..., min_length=1, alias="postSlug")
    post_title: Optional[str] = Field(None, alias="postTitle")


class AdminLoginPayload(BaseModel):
    email: str
    password: str
