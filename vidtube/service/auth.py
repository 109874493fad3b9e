from __future__ import annotations

import hmac
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Protocol

from vidtube.logging import get_logger
from vidtube.service.errors import (
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    TokenReusedError,
    UnauthorizedError,
    ValidationError,
)
from vidtube.service.media import MediaService
from vidtube.service.passwords import hash_password, needs_rehash, verify_password
from vidtube.service.tokens import TokenIssuer
from vidtube.service.validation import validate_email
from vidtube.storage.errors import ConstraintViolation
from vidtube.storage.models import Account, ChannelProfile, Subscription, WatchedVideo

logger = get_logger(__name__)


class AccountStore(Protocol):
    def create_account(
        self,
        *,
        username: str,
        email: str,
        full_name: str,
        password_hash: str,
        avatar: Optional[str] = None,
        cover_image: Optional[str] = None,
    ) -> Account: ...

    def get_account(self, account_id: str) -> Optional[Account]: ...

    def get_account_by_username(self, username: str) -> Optional[Account]: ...

    def find_account(
        self, *, email: Optional[str] = None, username: Optional[str] = None
    ) -> Optional[Account]: ...

    def update_account(self, account_id: str, **fields) -> Optional[Account]: ...

    def save_password(self, account_id: str, password_hash: str) -> None: ...

    def set_refresh_token(self, account_id: str, token: Optional[str]) -> bool: ...

    def add_subscription(self, subscriber_id: str, channel_id: str) -> Subscription: ...

    def remove_subscription(self, subscriber_id: str, channel_id: str) -> bool: ...

    def get_channel_profile(
        self, username: str, viewer_id: Optional[str] = None
    ) -> Optional[ChannelProfile]: ...

    def get_watch_history(self, account_id: str) -> List[WatchedVideo]: ...


@dataclass
class TokenPair:
    access_token: str
    refresh_token: str


def normalize_handle(value: Optional[str]) -> str:
    """Usernames and emails are stored trimmed and lowercased."""
    return (value or "").strip().lower()


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    return header.split(" ", 1)[1].strip() or None


class AuthService:
    """Registration, login, token renewal and the request gate."""

    def __init__(self, store: AccountStore, tokens: TokenIssuer, media: MediaService) -> None:
        self.store: AccountStore = store
        self.tokens = tokens
        self.media = media
        self.logger = logger

    def _issue_tokens(self, account: Account) -> TokenPair:
        pair = TokenPair(
            access_token=self.tokens.issue_access_token(
                account.id, account.email, account.username, account.full_name
            ),
            refresh_token=self.tokens.issue_renewal_token(account.id),
        )
        # Storing the new renewal token invalidates whichever one came before
        self.store.set_refresh_token(account.id, pair.refresh_token)
        return pair

    async def register(
        self,
        full_name: Optional[str],
        email: Optional[str],
        username: Optional[str],
        password: Optional[str],
        avatar_path: Optional[Path | str],
        cover_image_path: Optional[Path | str] = None,
    ) -> Account:
        try:
            fields = {
                "fullName": (full_name or "").strip(),
                "email": normalize_handle(email),
                "username": normalize_handle(username),
                "password": (password or "").strip(),
            }
            missing = [name for name, value in fields.items() if not value]
            if missing:
                raise ValidationError(
                    "All fields are required", detail={"missing": missing}
                )
            try:
                fields["email"] = validate_email(fields["email"])
            except ValueError as exc:
                raise ValidationError(
                    "Invalid email address", detail={"field": "email", "reason": str(exc)}
                ) from exc
            if self.store.find_account(email=fields["email"], username=fields["username"]):
                raise ConflictError("User with email or username already exists")
            if not avatar_path:
                raise ValidationError("Avatar file is required")

            avatar_url = await self.media.upload(avatar_path)
            if not avatar_url:
                raise ValidationError("Avatar file is required")
            cover_url = await self.media.upload(cover_image_path)

            try:
                account = self.store.create_account(
                    username=fields["username"],
                    email=fields["email"],
                    full_name=fields["fullName"],
                    password_hash=hash_password(password),
                    avatar=avatar_url,
                    cover_image=cover_url or "",
                )
            except ConstraintViolation as exc:
                raise ConflictError(
                    "User with email or username already exists", detail=exc.detail
                ) from exc
        finally:
            self.media.discard(avatar_path)
            self.media.discard(cover_image_path)
        self.logger.info("account_registered", account_id=account.id)
        return account.sanitized()

    async def login(
        self,
        identifier: Optional[str],
        password: Optional[str],
        *,
        email: Optional[str] = None,
    ) -> tuple[Account, TokenPair]:
        """Log in by username or email.

        A lone ``identifier`` is matched against both columns. When ``email`` is
        given too, ``identifier`` is treated as the username and each value is
        matched against its own column.
        """
        handle = normalize_handle(identifier)
        email_handle = normalize_handle(email)
        if not handle and not email_handle:
            raise ValidationError("username or email is required")
        if email_handle:
            account = self.store.find_account(email=email_handle, username=handle or None)
        else:
            account = self.store.find_account(email=handle, username=handle)
        if not account:
            raise NotFoundError("User does not exist")
        if not verify_password(account.password_hash, password or ""):
            self.logger.warning("login_password_mismatch", account_id=account.id)
            raise InvalidCredentialsError("Invalid user credentials")
        if needs_rehash(account.password_hash):
            self.store.save_password(account.id, hash_password(password))
        pair = self._issue_tokens(account)
        self.logger.info("login_succeeded", account_id=account.id)
        return account.sanitized(), pair

    async def renew(self, token: Optional[str]) -> TokenPair:
        if not token:
            raise UnauthorizedError("Unauthorized request")
        payload = self.tokens.verify_renewal_token(token)
        account = self.store.get_account(str(payload["sub"]))
        if not account:
            raise InvalidTokenError("Invalid refresh token")
        stored = account.refresh_token or ""
        if not hmac.compare_digest(stored.encode(), token.encode()):
            self.logger.warning("refresh_token_reused", account_id=account.id)
            raise TokenReusedError("Refresh token is expired or used")
        return self._issue_tokens(account)

    async def logout(self, account_id: str) -> None:
        self.store.set_refresh_token(account_id, None)
        self.logger.info("logout", account_id=account_id)

    async def change_password(
        self, account_id: str, old_password: Optional[str], new_password: Optional[str]
    ) -> None:
        account = self.store.get_account(account_id)
        if not account:
            raise NotFoundError("User does not exist")
        if not verify_password(account.password_hash, old_password or ""):
            raise InvalidCredentialsError("Invalid old password")
        if not (new_password or "").strip():
            raise ValidationError("New password is required")
        self.store.save_password(account_id, hash_password(new_password))
        self.logger.info("password_changed", account_id=account_id)

    async def authenticate(
        self, cookie_token: Optional[str], authorization: Optional[str]
    ) -> Account:
        token = cookie_token or _extract_bearer(authorization)
        if not token:
            raise UnauthorizedError("Unauthorized request")
        try:
            payload = self.tokens.verify_access_token(token)
        except InvalidTokenError as exc:
            raise UnauthorizedError("Invalid access token") from exc
        account = self.store.get_account(str(payload["sub"]))
        if not account:
            raise UnauthorizedError("Invalid access token")
        return account.sanitized()
