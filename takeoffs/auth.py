"""
Bearer-token guards for the HTTP routes.

Tokens are HS256 JWTs signed with the shared `JWT_SECRET`. Nothing is kept
between requests: every call re-verifies the token it carries.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

import jwt
from fastapi import Depends, Request

from takeoffs.config import Settings, get_settings
from takeoffs.errors import Forbidden, InvalidToken, Unauthenticated

logger = logging.getLogger(__name__)

USER_ID_CLAIMS = ("id", "userId", "sub")


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization") or ""
    parts = header.split(" ", 1)
    if len(parts) != 2 or parts[0].lower() != "bearer":
        return None
    return parts[1].strip() or None


def decode_token(token: str, settings: Settings) -> dict[str, Any]:
    if not settings.jwt_secret:
        # Misconfiguration should not let any token through.
        raise InvalidToken("Token verification is not configured")
    try:
        return jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"verify_exp": True},
        )
    except jwt.ExpiredSignatureError as exc:
        raise InvalidToken("Token has expired") from exc
    except jwt.PyJWTError as exc:
        raise InvalidToken() from exc


def issue_token(
    claims: dict[str, Any], settings: Settings, expires_in: int = 3600
) -> str:
    """Sign `claims` with the configured secret; used by dev tooling and tests."""
    if not settings.jwt_secret:
        raise ValueError("JWT_SECRET is required to issue tokens")
    now = int(time.time())
    payload = {**claims, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def authenticate(
    request: Request, settings: Settings = Depends(get_settings)
) -> dict[str, Any]:
    token = _bearer_token(request)
    if not token:
        logger.info("Rejected %s %s: no bearer token", request.method, request.url.path)
        raise Unauthenticated()
    try:
        claims = decode_token(token, settings)
    except InvalidToken as exc:
        logger.info("Rejected %s %s: %s", request.method, request.url.path, exc)
        raise
    request.state.user = claims
    return claims


def require_admin(
    request: Request, claims: dict[str, Any] = Depends(authenticate)
) -> dict[str, Any]:
    user = getattr(request.state, "user", None) or claims
    if not user or user.get("role") != "admin":
        raise Forbidden()
    return user


def user_id_from_claims(claims: Optional[dict[str, Any]]) -> Optional[str]:
    for key in USER_ID_CLAIMS:
        value = (claims or {}).get(key)
        if value:
            return str(value)
    return None
