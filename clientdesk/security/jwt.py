# clientdesk/security/jwt.py
# Los tokens los emite el servicio de identidad; aquí solo se validan.
# create_access_token queda para tests y scripts de demo.
from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from jose import jwt
from clientdesk.core.settings import settings


def _secret() -> str:
    return settings.JWT_SECRET_KEY or "dev-secret"


def _algo() -> str:
    return settings.JWT_ALGORITHM or "HS256"


def create_access_token(subject: int | str, extra: Dict[str, Any] | None = None, minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES if minutes is None else minutes
    payload: Dict[str, Any] = {
        "sub": str(subject),
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl)).timestamp()),
    }
    if extra:
        payload.update(extra)
    return jwt.encode(payload, _secret(), algorithm=_algo())


def decode_token(token: str) -> Dict[str, Any]:
    # JWTError / ExpiredSignatureError suben al caller (401); aud/iss no se firman
    return jwt.decode(
        token,
        _secret(),
        algorithms=[_algo()],
        options={"verify_aud": False, "verify_iss": False},
    )
