from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.oauth import DisconnectRequest, OAuthStartRequest, OAuthStartResponse, SuccessResponse
from app.services.auth_service import get_current_user_id
from app.services.oauth_service import complete_meta_oauth, disconnect_channel, start_meta_oauth
from app.services.rate_limiter import RateLimitResult, rate_limit

router = APIRouter(prefix="/oauth/meta", tags=["oauth"])


@router.post("/start", response_model=OAuthStartResponse)
def start(
    request: OAuthStartRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("oauth")),
):
    auth_url = start_meta_oauth(db, user_id, request.channel_id, request.channel_type)
    db.commit()
    return OAuthStartResponse(auth_url=auth_url)


@router.get("/callback")
def callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    error_reason: Optional[str] = None,
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("oauth")),
):
    redirect_url = complete_meta_oauth(db, code, state, error=error, error_reason=error_reason)
    db.commit()
    return RedirectResponse(redirect_url, status_code=302, headers=limit.headers)


@router.post("/disconnect", response_model=SuccessResponse)
def disconnect(
    request: DisconnectRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    disconnect_channel(db, user_id, request.channel_id)
    db.commit()
    return SuccessResponse(success=True)
