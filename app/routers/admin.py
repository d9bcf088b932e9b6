"""Operator endpoints guarded by the X-Admin-Token header."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.errors import AuthError, ServiceError
from app.services.oauth_service import refresh_expiring_tokens

router = APIRouter(prefix="/admin", tags=["admin"])


def _require_admin_token(provided: Optional[str]) -> None:
    expected = settings.admin_token
    if not expected:
        raise ServiceError("ADMIN_TOKEN not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        raise AuthError("Invalid admin token")


@router.post("/token-refresh")
def run_token_refresh(
    db: Session = Depends(get_db),
    x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token"),
):
    """Run one token refresh sweep now."""
    _require_admin_token(x_admin_token)
    results = refresh_expiring_tokens(db)
    return {"success": True, "checked": len(results), "results": results}
