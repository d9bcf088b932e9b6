"""Signed, expiring state values for provider OAuth redirects.

States are HS256 JWTs with a dedicated audience. The payload binds the flow to
a channel or bot and the user who started it; a random nonce makes every
issued value unique even for identical payloads.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from app.config import settings
from app.errors import OAuthStateError

STATE_AUDIENCE = "servio:oauth-state"
DEFAULT_STATE_TTL = timedelta(minutes=10)


def encode_state(payload: dict, expires_in: timedelta = DEFAULT_STATE_TTL, secret: Optional[str] = None) -> str:
    return jwt.encode(
        {
            **payload,
            "nonce": secrets.token_urlsafe(16),
            "exp": datetime.now(timezone.utc) + expires_in,
            "aud": STATE_AUDIENCE,
        },
        secret or settings.oauth_state_secret,
        algorithm="HS256",
    )


def decode_state(state: Optional[str], secret: Optional[str] = None) -> dict:
    """Verify the signature and expiry and return the claims.

    Raises OAuthStateError with reason `state_expired` or `invalid_state`.
    """
    if not state:
        raise OAuthStateError("invalid_state")
    try:
        return jwt.decode(
            state,
            secret or settings.oauth_state_secret,
            audience=STATE_AUDIENCE,
            algorithms=["HS256"],
        )
    except jwt.ExpiredSignatureError:
        raise OAuthStateError("state_expired")
    except jwt.PyJWTError:
        raise OAuthStateError("invalid_state")
