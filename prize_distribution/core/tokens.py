"""Host confirmation tokens.

A token binds one prize assignment to one confirmation cycle:

    token = hex(HMAC-SHA256(secret, assignment_id + nonce))[:32]

where the nonce is the issuance time in unix milliseconds.  The nonce and the
expiry are persisted next to the assignment, so verification re-derives the
HMAC and compares in constant time instead of trusting a stored string.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

from prize_distribution.core.config import settings
from prize_distribution.core.errors import (
    ConfigurationError,
    ExpiredTokenError,
    InvalidTokenError,
    ValidationError,
)


@dataclass(frozen=True)
class IssuedToken:
    token: str
    nonce: str
    issued_at: datetime
    expires_at: datetime


def _signing_secret(secret: str | None) -> str:
    secret = secret or settings.confirmation_signing_secret
    if not secret:
        raise ConfigurationError("Confirmation signing secret is not configured")
    return secret


def derive_token(assignment_id: str, nonce: str, secret: str | None = None) -> str:
    key = _signing_secret(secret).encode()
    digest = hmac.new(key, f"{assignment_id}{nonce}".encode(), hashlib.sha256).hexdigest()
    return digest[: settings.confirmation_token_length]


def issue_token(
    assignment_id: str,
    now: datetime | None = None,
    secret: str | None = None,
) -> IssuedToken:
    """Issue a fresh token for ``assignment_id``.  The caller persists it."""
    if not assignment_id:
        raise ValidationError("Assignment id is required to issue a confirmation token")

    now = now or datetime.now(timezone.utc)
    nonce = str(int(now.timestamp() * 1000))
    return IssuedToken(
        token=derive_token(assignment_id, nonce, secret),
        nonce=nonce,
        issued_at=now,
        expires_at=now + timedelta(days=settings.confirmation_ttl_days),
    )


def verify_token(
    assignment_id: str,
    presented: str,
    nonce: str | None,
    expires_at: datetime | None,
    now: datetime | None = None,
    secret: str | None = None,
) -> None:
    """Raise unless ``presented`` is the live token for ``assignment_id``."""
    if not presented or not nonce:
        raise InvalidTokenError("The confirmation link is invalid or has already been used")

    expected = derive_token(assignment_id, nonce, secret)
    if not hmac.compare_digest(expected.encode(), presented.encode()):
        raise InvalidTokenError("The confirmation link is invalid or has already been used")

    now = now or datetime.now(timezone.utc)
    if expires_at is None or now > expires_at:
        raise ExpiredTokenError("This confirmation link has expired")


def build_confirmation_url(assignment_id: str, token: str, base_url: str | None = None) -> str:
    base = (base_url or settings.public_base_url).rstrip("/")
    query = urlencode({"prizeId": assignment_id, "token": token})
    return f"{base}/confirm-prize-distribution?{query}"
