from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.database import get_db
from app.logging_config import get_logger
from app.services.channels import get_adapter, process_webhook
from app.services.rate_limiter import RateLimitResult, rate_limit

logger = get_logger("meta_webhook")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def _verify(
    db: Session,
    channel_type: str,
    mode: Optional[str],
    token: Optional[str],
    challenge: Optional[str],
    limit: RateLimitResult,
):
    echoed = get_adapter(channel_type).verify(db, mode, token, challenge)
    if echoed is None:
        return PlainTextResponse("Verification failed", status_code=403, headers=limit.headers)
    return PlainTextResponse(echoed, headers=limit.headers)


def _receive(db: Session, channel_type: str, payload: dict, limit: RateLimitResult):
    result = process_webhook(db, get_adapter(channel_type), payload)
    logger.info(
        "Webhook batch handled",
        extra={
            "context": {
                "channel_type": channel_type,
                "processed": result.processed,
                "skipped": result.skipped,
                "failed": result.failed,
            }
        },
    )
    if result.first_error is not None:
        # Non-2xx makes the provider redeliver the failed messages.
        raise result.first_error
    return PlainTextResponse("OK", headers=limit.headers)


@router.get("/whatsapp")
def verify_whatsapp(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("webhook")),
):
    return _verify(db, "whatsapp", mode, token, challenge, limit)


@router.post("/whatsapp")
def receive_whatsapp(
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("webhook")),
):
    return _receive(db, "whatsapp", payload, limit)


@router.get("/instagram")
def verify_instagram(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    token: Optional[str] = Query(None, alias="hub.verify_token"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("webhook")),
):
    return _verify(db, "instagram", mode, token, challenge, limit)


@router.post("/instagram")
def receive_instagram(
    payload: dict = Body(...),
    db: Session = Depends(get_db),
    limit: RateLimitResult = Depends(rate_limit("webhook")),
):
    return _receive(db, "instagram", payload, limit)
