from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import List, Optional


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class Account:
    id: str
    username: str
    email: str
    full_name: str
    password_hash: Optional[str] = None
    avatar: Optional[str] = None
    cover_image: Optional[str] = None
    refresh_token: Optional[str] = None
    watch_history: List[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def sanitized(self) -> "Account":
        """Copy without the password hash and the stored renewal token."""
        return replace(
            self,
            password_hash=None,
            refresh_token=None,
            watch_history=list(self.watch_history),
        )


@dataclass
class Subscription:
    id: str
    subscriber_id: str
    channel_id: str
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class Video:
    id: str
    owner_id: str
    title: str
    description: str = ""
    video_file: Optional[str] = None
    thumbnail: Optional[str] = None
    duration: float = 0.0
    views: int = 0
    is_published: bool = True
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)


@dataclass
class ChannelProfile:
    id: str
    username: str
    email: str
    full_name: str
    avatar: Optional[str]
    cover_image: Optional[str]
    subscribers_count: int
    channels_subscribed_to_count: int
    is_subscribed: bool


@dataclass
class VideoOwner:
    full_name: str
    username: str
    avatar: Optional[str] = None


@dataclass
class WatchedVideo:
    video: Video
    owner: Optional[VideoOwner]
