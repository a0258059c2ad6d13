"""Bearer token handling.

Tokens are issued by the identity service; this module only decodes them.
``create_access_token`` exists for tooling and tests.
"""
from datetime import datetime, timedelta, timezone
import jwt
from typing import Optional
from .core_settings import get_settings


def create_access_token(subject: str, role: str = "customer", expires_minutes: int = 60) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "role": role, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALG)


def decode_access_token(token: str) -> Optional[dict]:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALG])
    except jwt.PyJWTError:
        return None
