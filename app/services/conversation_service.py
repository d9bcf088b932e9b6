from datetime import datetime, timezone
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Conversation
from app.services.ids import to_uuid
from app.services.state_machine import OPEN_STATUSES, ConversationStatus, transition

logger = get_logger("conversation_service")


def find_open_conversation(db: Session, bot_id: UUID, channel_type: str, visitor_id: str) -> Optional[Conversation]:
    """Most recently updated open conversation for this visitor on this channel."""
    return (
        db.query(Conversation)
        .filter(
            Conversation.bot_id == bot_id,
            Conversation.channel_type == channel_type,
            Conversation.visitor_id == visitor_id,
            Conversation.status.in_(OPEN_STATUSES),
        )
        .order_by(Conversation.updated_at.desc())
        .first()
    )


def create_conversation(
    db: Session,
    bot_id: UUID,
    channel_type: str,
    visitor_id: str,
    visitor_name: Optional[str] = None,
    visitor_email: Optional[str] = None,
) -> Conversation:
    now = datetime.now(timezone.utc)
    conversation = Conversation(
        bot_id=bot_id,
        channel_type=channel_type,
        visitor_id=visitor_id,
        visitor_name=visitor_name,
        visitor_email=visitor_email,
        status=ConversationStatus.ACTIVE.value,
        created_at=now,
        updated_at=now,
    )
    db.add(conversation)
    db.flush()
    logger.info(
        "Conversation created",
        extra={"context": {"conversation_id": str(conversation.id), "bot_id": str(bot_id), "channel": channel_type}},
    )
    return conversation


def get_or_create_conversation(
    db: Session,
    bot_id: UUID,
    channel_type: str,
    visitor_id: str,
    visitor_name: Optional[str] = None,
    visitor_email: Optional[str] = None,
) -> Conversation:
    """Find the visitor's open conversation or start a new one.

    Two concurrent first messages may both create a conversation; the lookup
    always picks the most recently updated one, so later turns converge.
    """
    conversation = find_open_conversation(db, bot_id, channel_type, visitor_id)
    if conversation:
        if visitor_name and not conversation.visitor_name:
            conversation.visitor_name = visitor_name
        if visitor_email and not conversation.visitor_email:
            conversation.visitor_email = visitor_email
        return conversation

    return create_conversation(db, bot_id, channel_type, visitor_id, visitor_name, visitor_email)


def get_conversation_for_bot(db: Session, conversation_id, bot_id: UUID, visitor_id: str) -> Optional[Conversation]:
    """Conversation by id if it belongs to the bot and visitor and is still open."""
    conversation_uuid = to_uuid(conversation_id)
    if conversation_uuid is None:
        return None

    conversation = (
        db.query(Conversation)
        .filter(
            Conversation.id == conversation_uuid,
            Conversation.bot_id == bot_id,
            Conversation.visitor_id == visitor_id,
        )
        .first()
    )
    if not conversation or conversation.status not in OPEN_STATUSES:
        return None
    return conversation


def set_status(
    db: Session,
    conversation: Conversation,
    status: ConversationStatus,
    escalation_reason: Optional[str] = None,
) -> Conversation:
    """Move the conversation through the status state machine."""
    new_status = transition(ConversationStatus(conversation.status), status)
    conversation.status = new_status.value
    if new_status == ConversationStatus.ESCALATED:
        conversation.escalation_reason = escalation_reason
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
    return conversation


def touch_conversation(db: Session, conversation: Conversation) -> None:
    conversation.updated_at = datetime.now(timezone.utc)
    db.flush()
