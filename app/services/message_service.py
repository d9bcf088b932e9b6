from datetime import datetime, timezone
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from app.models import Message

HISTORY_LIMIT = 20
MESSAGE_ROLES = ("user", "assistant", "system")


def append_message(
    db: Session,
    conversation_id: UUID,
    role: str,
    content: str,
    metadata: Optional[dict] = None,
) -> Message:
    """Append a message to the conversation log. Messages are never edited."""
    if role not in MESSAGE_ROLES:
        raise ValueError(f"Unknown message role: {role}")

    message = Message(
        conversation_id=conversation_id,
        role=role,
        content=content,
        message_metadata=metadata or {},
        created_at=datetime.now(timezone.utc),
    )
    db.add(message)
    db.flush()
    return message


def list_messages(db: Session, conversation_id: UUID, limit: Optional[int] = None, ascending: bool = True) -> List[Message]:
    order = Message.created_at.asc() if ascending else Message.created_at.desc()
    query = db.query(Message).filter(Message.conversation_id == conversation_id).order_by(order)
    if limit:
        query = query.limit(limit)
    return query.all()


def get_conversation_history(db: Session, conversation_id: UUID, limit: int = HISTORY_LIMIT) -> List[dict]:
    """Last `limit` messages, oldest first, shaped for a chat-completions request."""
    recent = list_messages(db, conversation_id, limit=limit, ascending=False)
    return [{"role": m.role, "content": m.content} for m in reversed(recent)]
