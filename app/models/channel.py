import secrets
import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from app.database import Base
from app.schemas.channel_config import ChannelConfig, parse_channel_config

CHANNEL_TYPES = ("website", "whatsapp", "instagram")
MESSAGING_CHANNEL_TYPES = ("whatsapp", "instagram")


def generate_embed_key() -> str:
    return secrets.token_urlsafe(24)


class Channel(Base):
    __tablename__ = "bot_channels"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    bot_id = Column(UUID(as_uuid=True), ForeignKey("bots.id", ondelete="CASCADE"), nullable=False)
    channel_type = Column(Text, nullable=False)  # website, whatsapp, instagram
    is_active = Column(Boolean, nullable=False, default=False)
    config = Column(JSONB, nullable=False, default=dict)
    embed_key = Column(Text, unique=True)  # website only, never rotated
    oauth_state = Column(Text)
    oauth_expires_at = Column(TIMESTAMP(timezone=True))
    token_expires_at = Column(TIMESTAMP(timezone=True))
    token_refreshed_at = Column(TIMESTAMP(timezone=True))
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    updated_at = Column(TIMESTAMP(timezone=True), nullable=False)

    bot = relationship("Bot", back_populates="channels")

    @property
    def provider_config(self) -> ChannelConfig:
        return parse_channel_config(self.channel_type, self.config)

    def set_provider_config(self, config: ChannelConfig) -> None:
        self.config = config.model_dump(mode="json", exclude_none=True)

    @property
    def is_connected(self) -> bool:
        return bool((self.config or {}).get("connected")) and bool((self.config or {}).get("access_token"))
