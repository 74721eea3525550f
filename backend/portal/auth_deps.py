from __future__ import annotations
import uuid
from dataclasses import dataclass
import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from portal.security import decode_token

security = HTTPBearer()

@dataclass(frozen=True)
class CurrentUser:
    id: uuid.UUID

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> CurrentUser:
    try:
        data = decode_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid token")
    if data.get("type") != "access":
        raise HTTPException(status_code=401, detail="Wrong token type")
    try:
        user_id = uuid.UUID(str(data.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid subject")
    structlog.contextvars.bind_contextvars(user_id=str(user_id))
    return CurrentUser(id=user_id)
