from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Any
import jwt
from portal.config import settings

# Tokens are minted by the auth service with the same secret; the API only
# verifies them. make_access_token exists for local tooling and tests.

def make_access_token(sub: str, ttl_min: int = 15) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": sub,
        "type": "access",
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=ttl_min)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)

def decode_token(token: str) -> dict[str, Any]:
    return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
