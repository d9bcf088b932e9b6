"""Sequential processing of provider webhook batches."""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from app.config import settings
from app.errors import NotFoundError
from app.logging_config import get_logger
from app.services.ai_service import generate_reply
from app.services.channels.base import ChannelAdapter, InboundMessage
from app.services.redis_client import get_redis

logger = get_logger("channels.webhook")


@dataclass
class WebhookResult:
    processed: int = 0
    skipped: int = 0
    failed: int = 0
    delivered: int = 0
    errors: List[Exception] = field(default_factory=list)

    @property
    def first_error(self) -> Optional[Exception]:
        return self.errors[0] if self.errors else None


def _dedup_key(channel_type: str, message_id: str) -> str:
    return f"servio:dedup:{channel_type}:{message_id}"


def claim_message(channel_type: str, message_id: Optional[str], redis_client=None) -> bool:
    """True if this provider message id has not been seen yet. Fails open."""
    if not message_id:
        return True
    try:
        redis_client = redis_client or get_redis()
        if redis_client is None:
            return True
        was_set = redis_client.set(
            _dedup_key(channel_type, message_id), "1", ex=settings.webhook_dedup_ttl_seconds, nx=True
        )
    except Exception as e:
        logger.warning(f"Dedup redis unavailable, processing anyway: {e}")
        return True
    return bool(was_set)


def release_message(channel_type: str, message_id: Optional[str], redis_client=None) -> None:
    """Forget a claimed id so the provider's redelivery is processed."""
    if not message_id:
        return
    try:
        redis_client = redis_client or get_redis()
        if redis_client is None:
            return
        redis_client.delete(_dedup_key(channel_type, message_id))
    except Exception as e:
        logger.warning(f"Failed to release dedup key: {e}")


def _process_one(db: Session, adapter: ChannelAdapter, inbound: InboundMessage, result: WebhookResult) -> None:
    context = {"channel_type": adapter.channel_type, "account_id": inbound.account_id, "message_id": inbound.message_id}

    try:
        bot, channel = adapter.resolve(db, inbound)
    except NotFoundError:
        logger.info("Ignoring message for unknown account", extra={"context": context})
        result.skipped += 1
        return

    if adapter.is_self_message(inbound, channel):
        result.skipped += 1
        return

    reply = generate_reply(
        db,
        bot,
        adapter.channel_type,
        inbound.sender_id,
        inbound.text,
        visitor_name=inbound.sender_name,
    )
    db.commit()
    result.processed += 1
    logger.info(
        "Webhook message processed",
        extra={"context": {**context, "conversation_id": str(reply.conversation_id), "escalated": reply.escalated}},
    )

    if adapter.deliver(channel, inbound.sender_id, reply.reply_text):
        result.delivered += 1


def process_webhook(db: Session, adapter: ChannelAdapter, payload: Any, redis_client=None) -> WebhookResult:
    """Run every text message in the payload through the response engine, in order.

    Each message commits on its own. A failing message is rolled back and its
    dedup claim released so the provider's retry can process it; the remaining
    messages still run and the caller reports the first error.
    """
    result = WebhookResult()

    for inbound in adapter.ingest(payload):
        if not claim_message(adapter.channel_type, inbound.message_id, redis_client):
            logger.info(f"Duplicate message_id skipped: {inbound.message_id}")
            result.skipped += 1
            continue

        try:
            _process_one(db, adapter, inbound, result)
        except Exception as e:
            db.rollback()
            release_message(adapter.channel_type, inbound.message_id, redis_client)
            result.failed += 1
            result.errors.append(e)
            logger.error(
                "Webhook message failed",
                extra={"context": {"channel_type": adapter.channel_type, "message_id": inbound.message_id, "error": str(e)}},
                exc_info=True,
            )

    return result
