"""Store (commerce) integration connect flow."""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.schemas.oauth import ShopifyStartRequest, ShopifyStartResponse, ShopifyTestRequest, ShopifyTestResponse
from app.services.auth_service import get_current_user_id
from app.services.commerce_service import check_commerce_connection, complete_shopify_connect, start_shopify_connect
from app.services.rate_limiter import RateLimitResult, rate_limit

router = APIRouter(prefix="/integrations/shopify", tags=["integrations"])


@router.post("/start", response_model=ShopifyStartResponse)
def start(
    request: ShopifyStartRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    _limit=Depends(rate_limit("oauth")),
):
    url = start_shopify_connect(db, user_id, request.bot_id, request.shop_domain)
    return ShopifyStartResponse(authorization_url=url)


@router.get("/callback")
def callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    shop: Optional[str] = None,
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("oauth")),
):
    redirect_url = complete_shopify_connect(db, code, state, shop)
    db.commit()
    return RedirectResponse(redirect_url, status_code=302, headers=limit.headers)


@router.post("/test", response_model=ShopifyTestResponse)
def test_connection(
    request: ShopifyTestRequest,
    db: Session = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
):
    return ShopifyTestResponse(**check_commerce_connection(db, user_id, request.bot_id))
