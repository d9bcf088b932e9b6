import uuid

from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base


class Bot(Base):
    __tablename__ = "bots"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(UUID(as_uuid=True), nullable=False)  # owner
    name = Column(Text, nullable=False)
    description = Column(Text)
    instructions = Column(Text, nullable=False, default="")
    welcome_message = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
    escalation_enabled = Column("triage_enabled", Boolean, nullable=False, default=True)
    escalation_threshold = Column("triage_threshold", Integer)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    channels = relationship("Channel", back_populates="bot", cascade="all, delete-orphan")
    knowledge_entries = relationship("KnowledgeEntry", back_populates="bot", cascade="all, delete-orphan")
    conversations = relationship("Conversation", back_populates="bot", cascade="all, delete-orphan")
    commerce_integration = relationship(
        "CommerceIntegration", back_populates="bot", uselist=False, cascade="all, delete-orphan"
    )
