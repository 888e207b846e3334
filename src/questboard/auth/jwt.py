"""Access token verification.

Tokens are issued by the platform's auth service after wallet signature
verification; this service only checks them. ``sub`` carries the opaque user
id and ``address`` the wallet address.
"""

from __future__ import annotations

from typing import Any

import jwt

from questboard.config import get_settings


def verify_token(token: str) -> dict[str, Any]:
    """Decode and validate an access token.

    Raises:
        jwt.InvalidTokenError: signature, expiry, issuer or claims are invalid.
    """
    settings = get_settings()
    payload: dict[str, Any] = jwt.decode(
        token,
        settings.jwt_secret,
        algorithms=[settings.jwt_algorithm],
        issuer=settings.jwt_issuer,
        options={"require": ["sub", "exp"]},
    )
    if payload.get("type", "access") != "access":
        raise jwt.InvalidTokenError("Expected an access token")
    return payload
