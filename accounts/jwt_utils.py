from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from django.conf import settings


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def issue_access_token(*, user_id: int, role: str = "") -> str:
    exp = _now() + timedelta(minutes=int(settings.JWT_ACCESS_TTL_MINUTES))
    payload = {
        "sub": str(user_id),
        "type": "access",
        "role": role,
        "iat": int(_now().timestamp()),
        "exp": int(exp.timestamp()),
    }
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> dict:
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
