"""Map inbound identifiers (embed keys, provider account ids, verify tokens) to bots."""

from typing import Optional, Tuple

from pydantic import ValidationError as ConfigValidationError
from sqlalchemy.orm import Session

from app.errors import NotFoundError
from app.logging_config import get_logger
from app.models import Bot, Channel

logger = get_logger("channel_resolver")

BOT_NOT_FOUND = "Bot not found or inactive"


def _active_channels(db: Session, channel_type: str):
    return db.query(Channel).filter(Channel.channel_type == channel_type, Channel.is_active.is_(True)).all()


def _safe_config(channel: Channel):
    try:
        return channel.provider_config
    except ConfigValidationError as e:
        logger.warning(
            "Skipping channel with invalid config",
            extra={"context": {"channel_id": str(channel.id), "error": str(e)}},
        )
        return None


def _require_active_bot(channel: Optional[Channel]) -> Tuple[Bot, Channel]:
    if not channel or not channel.is_active:
        raise NotFoundError(BOT_NOT_FOUND)
    bot = channel.bot
    if not bot or not bot.is_active:
        raise NotFoundError(BOT_NOT_FOUND)
    return bot, channel


def resolve_by_embed_key(db: Session, embed_key: str) -> Tuple[Bot, Channel]:
    if not embed_key:
        raise NotFoundError(BOT_NOT_FOUND)
    channel = (
        db.query(Channel)
        .filter(Channel.embed_key == embed_key, Channel.channel_type == "website")
        .first()
    )
    return _require_active_bot(channel)


def resolve_by_provider_account(db: Session, channel_type: str, account_id: str) -> Tuple[Bot, Channel]:
    """Find the bot whose connected account receives messages for `account_id`."""
    if account_id:
        for channel in _active_channels(db, channel_type):
            config = _safe_config(channel)
            if config is not None and config.matches_account(account_id):
                return _require_active_bot(channel)

    logger.info(
        "No channel for provider account",
        extra={"context": {"channel_type": channel_type, "account_id": account_id}},
    )
    raise NotFoundError(BOT_NOT_FOUND)


def find_channel_by_verify_token(db: Session, channel_type: str, token: str) -> Optional[Channel]:
    if not token:
        return None
    for channel in _active_channels(db, channel_type):
        config = _safe_config(channel)
        if config is not None and config.webhook_verify_token == token:
            return channel
    return None
