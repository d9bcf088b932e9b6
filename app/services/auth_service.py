"""Caller identity from identity-provider issued bearer tokens."""

from typing import Optional

import jwt
from fastapi import Header

from app.config import settings
from app.errors import AuthError
from app.logging_config import get_logger

logger = get_logger("auth_service")


def decode_user_token(token: str) -> str:
    """Return the user id (`sub`) of a valid HS256 access token."""
    if not settings.auth_jwt_secret:
        logger.error("AUTH_JWT_SECRET not configured")
        raise AuthError("Unauthorized")

    try:
        claims = jwt.decode(
            token,
            settings.auth_jwt_secret,
            audience=settings.auth_jwt_audience,
            algorithms=["HS256"],
        )
    except jwt.PyJWTError as e:
        logger.info("Rejected access token", extra={"context": {"error": str(e)}})
        raise AuthError("Unauthorized")

    user_id = claims.get("sub")
    if not user_id:
        raise AuthError("Unauthorized")
    return user_id


def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """FastAPI dependency: `Authorization: Bearer <token>` -> user id."""
    if not authorization:
        raise AuthError("Missing authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Unauthorized")
    return decode_user_token(token.strip())
