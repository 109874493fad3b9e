from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from vidtube.logging import get_logger
from vidtube.service.auth import AccountStore, normalize_handle
from vidtube.service.errors import ConflictError, NotFoundError, ValidationError
from vidtube.service.media import MediaService
from vidtube.storage.errors import ConstraintViolation
from vidtube.storage.models import Account, ChannelProfile, WatchedVideo

logger = get_logger(__name__)


class ProfileService:
    def __init__(self, store: AccountStore, media: MediaService) -> None:
        self.store = store
        self.media = media

    def _require_account(self, account_id: str) -> Account:
        account = self.store.get_account(account_id)
        if not account:
            raise NotFoundError("User does not exist")
        return account

    async def get_current(self, account_id: str) -> Account:
        return self._require_account(account_id).sanitized()

    async def update_account(
        self,
        account_id: str,
        full_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> Account:
        """Partial update; omitted fields keep their stored values."""
        changes = {}
        if full_name is not None and full_name.strip():
            changes["full_name"] = full_name.strip()
        if email is not None and email.strip():
            changes["email"] = normalize_handle(email)
        if not changes:
            raise ValidationError("fullName or email is required")
        try:
            account = self.store.update_account(account_id, **changes)
        except ConstraintViolation as exc:
            raise ConflictError("Email is already in use", detail=exc.detail) from exc
        if not account:
            raise NotFoundError("User does not exist")
        logger.info("account_updated", account_id=account_id, fields=sorted(changes))
        return account.sanitized()

    async def _replace_image(
        self, account_id: str, local_path: Optional[Path | str], field: str, label: str
    ) -> Account:
        try:
            if not local_path:
                raise ValidationError(f"{label} file is missing")
            self._require_account(account_id)
            url = await self.media.upload(local_path)
            if not url:
                raise ValidationError(f"Error while uploading {label.lower()}")
        finally:
            self.media.discard(local_path)
        account = self.store.update_account(account_id, **{field: url})
        if not account:
            raise NotFoundError("User does not exist")
        logger.info("account_image_updated", account_id=account_id, field=field)
        return account.sanitized()

    async def update_avatar(self, account_id: str, local_path: Optional[Path | str]) -> Account:
        return await self._replace_image(account_id, local_path, "avatar", "Avatar")

    async def update_cover_image(
        self, account_id: str, local_path: Optional[Path | str]
    ) -> Account:
        return await self._replace_image(account_id, local_path, "cover_image", "Cover image")

    async def channel_profile(
        self, username: Optional[str], viewer_id: Optional[str]
    ) -> ChannelProfile:
        handle = normalize_handle(username)
        if not handle:
            raise ValidationError("username is missing")
        profile = self.store.get_channel_profile(handle, viewer_id)
        if not profile:
            raise NotFoundError("channel does not exist")
        return profile

    async def watch_history(self, account_id: str) -> List[WatchedVideo]:
        self._require_account(account_id)
        return self.store.get_watch_history(account_id)

    def _require_channel(self, viewer_id: str, username: Optional[str]) -> Account:
        handle = normalize_handle(username)
        if not handle:
            raise ValidationError("username is missing")
        channel = self.store.get_account_by_username(handle)
        if not channel:
            raise NotFoundError("channel does not exist")
        if channel.id == viewer_id:
            raise ValidationError("cannot subscribe to your own channel")
        return channel

    async def subscribe(self, viewer_id: str, username: Optional[str]) -> ChannelProfile:
        channel = self._require_channel(viewer_id, username)
        try:
            self.store.add_subscription(viewer_id, channel.id)
        except ConstraintViolation as exc:
            raise NotFoundError("User does not exist", detail=exc.detail) from exc
        logger.info("channel_subscribed", subscriber_id=viewer_id, channel_id=channel.id)
        return await self.channel_profile(channel.username, viewer_id)

    async def unsubscribe(self, viewer_id: str, username: Optional[str]) -> ChannelProfile:
        channel = self._require_channel(viewer_id, username)
        removed = self.store.remove_subscription(viewer_id, channel.id)
        if removed:
            logger.info(
                "channel_unsubscribed", subscriber_id=viewer_id, channel_id=channel.id
            )
        return await self.channel_profile(channel.username, viewer_id)
