from __future__ import annotations

import re
import unicodedata

_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def normalize_unicode(value: str) -> str:
    """NFKC-normalize and drop zero-width and bidi override characters."""
    hidden = set("\u200b\u200c\u200d\ufeff")
    hidden.update(chr(c) for c in range(0x202A, 0x202F))
    hidden.update(chr(c) for c in range(0x2066, 0x206A))
    cleaned = "".join(c for c in value if c not in hidden)
    return unicodedata.normalize("NFKC", cleaned)


def validate_email(value: str) -> str:
    """Return the trimmed, lowercased address or raise ``ValueError``."""
    normalized = normalize_unicode(value.strip().lower())
    if len(normalized) > 254:
        raise ValueError("email address too long")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if len(local) > 64 or not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized
