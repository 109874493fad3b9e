from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import jwt

from vidtube.config import Settings
from vidtube.logging import get_logger
from vidtube.service.errors import InvalidTokenError

logger = get_logger(__name__)

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenIssuer:
    """Mint and verify the signed access and renewal tokens.

    Access and renewal tokens are signed with different secrets so one kind
    can never be replayed as the other even if the ``type`` claim were
    ignored.
    """

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        access_ttl: timedelta,
        refresh_ttl: timedelta,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.access_secret = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock or _utcnow

    @classmethod
    def from_settings(
        cls, settings: Settings, *, clock: Optional[Callable[[], datetime]] = None
    ) -> "TokenIssuer":
        return cls(
            access_secret=settings.access_token_secret,
            refresh_secret=settings.refresh_token_secret,
            access_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_ttl_minutes),
            clock=clock,
        )

    def _encode(self, claims: Dict[str, Any], secret: str, ttl: timedelta) -> str:
        issued_at = self._clock()
        payload = {
            **claims,
            "jti": uuid.uuid4().hex,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + ttl).timestamp()),
        }
        return jwt.encode(payload, secret, algorithm=ALGORITHM)

    def issue_access_token(
        self, account_id: str, email: str, username: str, full_name: str
    ) -> str:
        return self._encode(
            {
                "sub": account_id,
                "email": email,
                "username": username,
                "fullName": full_name,
                "type": ACCESS,
            },
            self.access_secret,
            self.access_ttl,
        )

    def issue_renewal_token(self, account_id: str) -> str:
        return self._encode(
            {"sub": account_id, "type": REFRESH}, self.refresh_secret, self.refresh_ttl
        )

    def verify(self, token: str, secret: str, expected_type: str) -> Dict[str, Any]:
        if not token:
            raise InvalidTokenError("token missing")
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[ALGORITHM],
                options={"require": ["sub", "exp", "iat"]},
            )
        except jwt.ExpiredSignatureError as exc:
            raise InvalidTokenError("token expired") from exc
        except jwt.PyJWTError as exc:
            logger.info("token_decode_failed", error_type=type(exc).__name__)
            raise InvalidTokenError("invalid token") from exc
        if payload.get("type") != expected_type:
            raise InvalidTokenError("unexpected token type")
        # The injected clock may run ahead of wall time
        if payload["exp"] <= int(self._clock().timestamp()):
            raise InvalidTokenError("token expired")
        return payload

    def verify_access_token(self, token: str) -> Dict[str, Any]:
        return self.verify(token, self.access_secret, ACCESS)

    def verify_renewal_token(self, token: str) -> Dict[str, Any]:
        return self.verify(token, self.refresh_secret, REFRESH)
