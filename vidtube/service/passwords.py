from __future__ import annotations

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHash, VerificationError, VerifyMismatchError

from vidtube.logging import get_logger

logger = get_logger(__name__)

_pwd_hasher = PasswordHasher(type=Type.ID)


def hash_password(password: str) -> str:
    """Return an argon2id PHC string for ``password``."""
    return _pwd_hasher.hash(password)


def verify_password(password_hash: str | None, password: str) -> bool:
    if not password_hash:
        return False
    try:
        return _pwd_hasher.verify(password_hash, password)
    except VerifyMismatchError:
        return False
    except (InvalidHash, VerificationError):
        logger.warning("password_hash_unusable")
        return False


def needs_rehash(password_hash: str) -> bool:
    """True when the stored hash was made with weaker parameters than today's."""
    try:
        return _pwd_hasher.check_needs_rehash(password_hash)
    except InvalidHash:
        return True
