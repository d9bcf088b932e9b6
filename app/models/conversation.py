import uuid

from sqlalchemy import Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Conversation(Base):
    __tablename__ = "bot_conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bot_id = Column(UUID(as_uuid=True), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False)
    channel_type = Column(Text, nullable=False)  # website, whatsapp, instagram
    visitor_id = Column(Text, nullable=False)  # browser id, phone number or platform user id
    visitor_name = Column(Text)
    visitor_email = Column(Text)
    status = Column(Text, nullable=False, default="active")  # active, escalated, resolved
    escalation_reason = Column(Text)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    bot = relationship("Bot", back_populates="conversations")
    messages = relationship("Message", back_populates="conversation", order_by="Message.created_at")
