"""Signing and reading of the session tokens handed out at login."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from .models import User, format_time

TOKEN_LIFETIME = timedelta(days=7)
_ALGORITHM = "HS256"


def _expiry(now: datetime | None) -> str:
    if now is None:
        now = datetime.now(timezone.utc)
    return format_time(now + TOKEN_LIFETIME)


def sign_user_jwt(user: User, secret: str, now: datetime | None = None) -> str:
    """Sign a token naming the user by public id and address, valid for seven days."""
    claims = {
        "address": user.address,
        "expiredAt": _expiry(now),
        "publicId": str(user.public_id),
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def sign_id_jwt(user: User, secret: str, now: datetime | None = None) -> str:
    """Sign a token naming the user by numeric id and address, valid for seven days."""
    claims = {
        "address": user.address,
        "expiredAt": _expiry(now),
        "id": user.id,
    }
    return jwt.encode(claims, secret, algorithm=_ALGORITHM)


def decode_jwt(token: str, secret: str) -> dict[str, Any]:
    """Verify a token's signature and return its claims; raises jwt.InvalidTokenError."""
    return jwt.decode(token, secret, algorithms=[_ALGORITHM])