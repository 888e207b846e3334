"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from questboard.auth.jwt import verify_token
from questboard.db.models import USER_ID_LENGTH

_bearer = HTTPBearer()


@dataclass(frozen=True)
class CurrentUser:
    """Identity supplied by the auth layer."""

    user_id: str
    address: str | None = None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Security(_bearer),
) -> CurrentUser:
    """Extract and verify the bearer JWT. Raises 401 on failure."""
    try:
        payload = verify_token(credentials.credentials)
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=str(e)) from e

    user_id = str(payload["sub"])
    if not user_id or len(user_id) > USER_ID_LENGTH:
        raise HTTPException(status_code=401, detail="Invalid subject claim")

    address = payload.get("address")
    return CurrentUser(
        user_id=user_id,
        address=address.lower() if isinstance(address, str) else None,
    )
