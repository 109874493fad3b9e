from __future__ import annotations

import json
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from vidtube.logging import get_logger
from vidtube.storage.errors import ConstraintViolation
from vidtube.storage.models import (
    Account,
    ChannelProfile,
    Subscription,
    Video,
    VideoOwner,
    WatchedVideo,
    new_id,
)

# Fields a caller may change through update_account
_MUTABLE_ACCOUNT_FIELDS = frozenset({"full_name", "email", "avatar", "cover_image"})


class MemoryStore:
    """In-process document store backed by a JSON snapshot under ``fs_root``."""

    def __init__(self, fs_root: str = "/tmp/vidtube", *, persist: bool = True) -> None:
        self.logger = get_logger(__name__)
        self.accounts: Dict[str, Account] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.videos: Dict[str, Video] = {}
        # RLock so helpers can call each other while holding the lock
        self._data_lock = threading.RLock()
        self.fs_root = Path(fs_root)
        self.fs_root.mkdir(parents=True, exist_ok=True)
        self.persist = persist
        if persist:
            self._load_state()

    def _state_path(self) -> Path:
        state_dir = self.fs_root / "state"
        state_dir.mkdir(parents=True, exist_ok=True)
        return state_dir / "memory_store.json"

    def verify_connection(self) -> None:
        if not self.fs_root.is_dir():
            raise FileNotFoundError(self.fs_root)

    # accounts
    def create_account(
        self,
        *,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar: Optional[str] = None,
        cover_image: Optional[str] = None,
    ) -> Account:
        with self._data_lock:
            for existing in self.accounts.values():
                if existing.email == email:
                    raise ConstraintViolation("email already exists", {"field": "email"})
                if existing.username == username:
                    raise ConstraintViolation(
                        "username already exists", {"field": "username"}
                    )
            account = Account(
                id=new_id(),
                username=username,
                email=email,
                full_name=full_name,
                password_hash=password_hash,
                avatar=avatar,
                cover_image=cover_image,
            )
            self.accounts[account.id] = account
            self._persist_state()
            return account

    def get_account(self, account_id: str) -> Optional[Account]:
        with self._data_lock:
            return self.accounts.get(account_id)

    def get_account_by_username(self, username: str) -> Optional[Account]:
        with self._data_lock:
            return next(
                (a for a in self.accounts.values() if a.username == username), None
            )

    def find_account(
        self, *, email: Optional[str] = None, username: Optional[str] = None
    ) -> Optional[Account]:
        """Return the first account whose email OR username matches."""
        if not email and not username:
            return None
        with self._data_lock:
            for account in self.accounts.values():
                if email and account.email == email:
                    return account
                if username and account.username == username:
                    return account
            return None

    def update_account(self, account_id: str, **fields: Any) -> Optional[Account]:
        unknown = set(fields) - _MUTABLE_ACCOUNT_FIELDS
        if unknown:
            raise ValueError(f"cannot update account fields: {sorted(unknown)}")
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return None
            email = fields.get("email")
            if email and any(
                other.email == email and other.id != account_id
                for other in self.accounts.values()
            ):
                raise ConstraintViolation("email already exists", {"field": "email"})
            for name, value in fields.items():
                setattr(account, name, value)
            account.updated_at = datetime.utcnow()
            self._persist_state()
            return account

    def save_password(self, account_id: str, password_hash: str) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                raise ConstraintViolation(
                    "account not found for credentials", {"account_id": account_id}
                )
            account.password_hash = password_hash
            account.updated_at = datetime.utcnow()
            self._persist_state()

    def set_refresh_token(self, account_id: str, token: Optional[str]) -> bool:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return False
            account.refresh_token = token
            account.updated_at = datetime.utcnow()
            self._persist_state()
            return True

    # subscriptions
    def add_subscription(self, subscriber_id: str, channel_id: str) -> Subscription:
        with self._data_lock:
            for sub in self.subscriptions.values():
                if sub.subscriber_id == subscriber_id and sub.channel_id == channel_id:
                    return sub
            if subscriber_id not in self.accounts or channel_id not in self.accounts:
                raise ConstraintViolation(
                    "subscription references unknown account",
                    {"subscriber_id": subscriber_id, "channel_id": channel_id},
                )
            sub = Subscription(
                id=new_id(), subscriber_id=subscriber_id, channel_id=channel_id
            )
            self.subscriptions[sub.id] = sub
            self._persist_state()
            return sub

    def remove_subscription(self, subscriber_id: str, channel_id: str) -> bool:
        with self._data_lock:
            match = next(
                (
                    sub_id
                    for sub_id, sub in self.subscriptions.items()
                    if sub.subscriber_id == subscriber_id and sub.channel_id == channel_id
                ),
                None,
            )
            if match is None:
                return False
            self.subscriptions.pop(match)
            self._persist_state()
            return True

    def get_channel_profile(
        self, username: str, viewer_id: Optional[str] = None
    ) -> Optional[ChannelProfile]:
        with self._data_lock:
            channel = self.get_account_by_username(username)
            if not channel:
                return None
            subscribers = [
                s for s in self.subscriptions.values() if s.channel_id == channel.id
            ]
            subscribed_to = [
                s for s in self.subscriptions.values() if s.subscriber_id == channel.id
            ]
            return ChannelProfile(
                id=channel.id,
                username=channel.username,
                email=channel.email,
                full_name=channel.full_name,
                avatar=channel.avatar,
                cover_image=channel.cover_image,
                subscribers_count=len(subscribers),
                channels_subscribed_to_count=len(subscribed_to),
                is_subscribed=bool(viewer_id)
                and any(s.subscriber_id == viewer_id for s in subscribers),
            )

    # videos / watch history
    def create_video(
        self,
        owner_id: str,
        title: str,
        *,
        description: str = "",
        video_file: Optional[str] = None,
        thumbnail: Optional[str] = None,
        duration: float = 0.0,
        is_published: bool = True,
    ) -> Video:
        with self._data_lock:
            if owner_id not in self.accounts:
                raise ConstraintViolation(
                    "video owner not found", {"owner_id": owner_id}
                )
            video = Video(
                id=new_id(),
                owner_id=owner_id,
                title=title,
                description=description,
                video_file=video_file,
                thumbnail=thumbnail,
                duration=duration,
                is_published=is_published,
            )
            self.videos[video.id] = video
            self._persist_state()
            return video

    def add_to_watch_history(self, account_id: str, video_id: str) -> None:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                raise ConstraintViolation(
                    "account not found", {"account_id": account_id}
                )
            if video_id not in self.videos:
                raise ConstraintViolation("video not found", {"video_id": video_id})
            account.watch_history.append(video_id)
            self._persist_state()

    def get_watch_history(self, account_id: str) -> List[WatchedVideo]:
        with self._data_lock:
            account = self.accounts.get(account_id)
            if not account:
                return []
            history: List[WatchedVideo] = []
            for video_id in account.watch_history:
                video = self.videos.get(video_id)
                if not video:
                    continue
                owner = self.accounts.get(video.owner_id)
                history.append(
                    WatchedVideo(
                        video=video,
                        owner=VideoOwner(
                            full_name=owner.full_name,
                            username=owner.username,
                            avatar=owner.avatar,
                        )
                        if owner
                        else None,
                    )
                )
            return history

    # persistence
    def _persist_state(self) -> None:
        if not self.persist:
            return
        state = {
            "accounts": [self._serialize_account(a) for a in self.accounts.values()],
            "subscriptions": [
                self._serialize_subscription(s) for s in self.subscriptions.values()
            ],
            "videos": [self._serialize_video(v) for v in self.videos.values()],
        }
        path = self._state_path()
        try:
            path.write_text(json.dumps(state, indent=2))
        except OSError as exc:
            raise RuntimeError(f"failed to persist in-memory state: {exc}") from exc

    def _load_state(self) -> bool:
        path = self._state_path()
        try:
            data = json.loads(path.read_text())
        except FileNotFoundError:
            return False
        self.accounts = {
            a["id"]: self._deserialize_account(a) for a in data.get("accounts", [])
        }
        self.subscriptions = {
            s["id"]: self._deserialize_subscription(s)
            for s in data.get("subscriptions", [])
        }
        self.videos = {
            v["id"]: self._deserialize_video(v) for v in data.get("videos", [])
        }
        self.logger.info(
            "memory_store_loaded",
            accounts=len(self.accounts),
            subscriptions=len(self.subscriptions),
            videos=len(self.videos),
        )
        return True

    @staticmethod
    def _serialize_datetime(dt: datetime) -> str:
        return dt.isoformat()

    @staticmethod
    def _deserialize_datetime(raw: str) -> datetime:
        return datetime.fromisoformat(raw)

    def _serialize_account(self, account: Account) -> dict:
        return {
            "id": account.id,
            "username": account.username,
            "email": account.email,
            "full_name": account.full_name,
            "password_hash": account.password_hash,
            "avatar": account.avatar,
            "cover_image": account.cover_image,
            "refresh_token": account.refresh_token,
            "watch_history": list(account.watch_history),
            "created_at": self._serialize_datetime(account.created_at),
            "updated_at": self._serialize_datetime(account.updated_at),
        }

    def _deserialize_account(self, data: dict) -> Account:
        return Account(
            id=str(data["id"]),
            username=data["username"],
            email=data["email"],
            full_name=data.get("full_name", ""),
            password_hash=data.get("password_hash"),
            avatar=data.get("avatar"),
            cover_image=data.get("cover_image"),
            refresh_token=data.get("refresh_token"),
            watch_history=list(data.get("watch_history") or []),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_subscription(self, sub: Subscription) -> dict:
        return {
            "id": sub.id,
            "subscriber_id": sub.subscriber_id,
            "channel_id": sub.channel_id,
            "created_at": self._serialize_datetime(sub.created_at),
            "updated_at": self._serialize_datetime(sub.updated_at),
        }

    def _deserialize_subscription(self, data: dict) -> Subscription:
        return Subscription(
            id=str(data["id"]),
            subscriber_id=data["subscriber_id"],
            channel_id=data["channel_id"],
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )

    def _serialize_video(self, video: Video) -> dict:
        return {
            "id": video.id,
            "owner_id": video.owner_id,
            "title": video.title,
            "description": video.description,
            "video_file": video.video_file,
            "thumbnail": video.thumbnail,
            "duration": video.duration,
            "views": video.views,
            "is_published": video.is_published,
            "created_at": self._serialize_datetime(video.created_at),
            "updated_at": self._serialize_datetime(video.updated_at),
        }

    def _deserialize_video(self, data: dict) -> Video:
        return Video(
            id=str(data["id"]),
            owner_id=data["owner_id"],
            title=data["title"],
            description=data.get("description", ""),
            video_file=data.get("video_file"),
            thumbnail=data.get("thumbnail"),
            duration=float(data.get("duration", 0.0)),
            views=int(data.get("views", 0)),
            is_published=data.get("is_published", True),
            created_at=self._deserialize_datetime(data["created_at"]),
            updated_at=self._deserialize_datetime(data["updated_at"]),
        )
