from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from vidtube.service.errors import ErrorKind
from vidtube.service.validation import validate_email
from vidtube.storage.models import Account, ChannelProfile, WatchedVideo

_VALID_ERROR_CODES = frozenset(kind.value for kind in ErrorKind)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(_CamelModel):
    """Success envelope: ``{statusCode, data, message, success}``."""

    status_code: int = 200
    data: Optional[Any] = None
    message: str = "Success"
    success: bool = True

    @model_validator(mode="after")
    def _derive_success(self):
        self.success = self.status_code < 400
        return self


class ErrorBody(_CamelModel):
    status_code: int
    message: str
    success: bool = False
    code: str
    errors: Optional[Any] = None

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(f"Invalid error code '{value}'")
        return value


class LoginRequest(_CamelModel):
    email: Optional[str] = Field(default=None, max_length=254)
    username: Optional[str] = Field(default=None, max_length=64)
    password: str = Field(..., max_length=128)


class TokenRefreshRequest(_CamelModel):
    refresh_token: Optional[str] = Field(default=None, max_length=2048)


class PasswordChangeRequest(_CamelModel):
    old_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., max_length=128)


class UpdateAccountRequest(_CamelModel):
    full_name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _validate_update_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return validate_email(value)


class AccountOut(_CamelModel):
    id: str = Field(..., serialization_alias="_id")
    username: str
    email: str
    full_name: str
    avatar: Optional[str] = None
    cover_image: Optional[str] = None
    watch_history: List[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountOut":
        return cls(
            id=account.id,
            username=account.username,
            email=account.email,
            full_name=account.full_name,
            avatar=account.avatar,
            cover_image=account.cover_image,
            watch_history=list(account.watch_history),
            created_at=account.created_at,
            updated_at=account.updated_at,
        )


class LoginResponse(_CamelModel):
    user: AccountOut
    access_token: str
    refresh_token: str


class TokenPairResponse(_CamelModel):
    access_token: str
    refresh_token: str


class ChannelProfileOut(_CamelModel):
    id: str = Field(..., serialization_alias="_id")
    username: str
    email: str
    full_name: str
    avatar: Optional[str] = None
    cover_image: Optional[str] = None
    subscribers_count: int
    channels_subscribed_to_count: int
    is_subscribed: bool

    @classmethod
    def from_profile(cls, profile: ChannelProfile) -> "ChannelProfileOut":
        return cls(
            id=profile.id,
            username=profile.username,
            email=profile.email,
            full_name=profile.full_name,
            avatar=profile.avatar,
            cover_image=profile.cover_image,
            subscribers_count=profile.subscribers_count,
            channels_subscribed_to_count=profile.channels_subscribed_to_count,
            is_subscribed=profile.is_subscribed,
        )


class VideoOwnerOut(_CamelModel):
    full_name: str
    username: str
    avatar: Optional[str] = None


class WatchedVideoOut(_CamelModel):
    id: str = Field(..., serialization_alias="_id")
    title: str
    description: str = ""
    video_file: Optional[str] = None
    thumbnail: Optional[str] = None
    duration: float = 0.0
    views: int = 0
    is_published: bool = True
    owner: Optional[VideoOwnerOut] = None
    created_at: datetime

    @classmethod
    def from_watched(cls, item: WatchedVideo) -> "WatchedVideoOut":
        video = item.video
        owner = None
        if item.owner:
            owner = VideoOwnerOut(
                full_name=item.owner.full_name,
                username=item.owner.username,
                avatar=item.owner.avatar,
            )
        return cls(
            id=video.id,
            title=video.title,
            description=video.description,
            video_file=video.video_file,
            thumbnail=video.thumbnail,
            duration=video.duration,
            views=video.views,
            is_published=video.is_published,
            owner=owner,
            created_at=video.created_at,
        )
