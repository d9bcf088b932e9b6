from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models import Bot, Channel


@dataclass
class InboundMessage:
    """One visitor message, normalised across channels."""

    channel_type: str
    account_id: str  # embed key or provider account the message was sent to
    sender_id: str
    text: str
    message_id: Optional[str] = None
    sender_name: Optional[str] = None
    visitor_email: Optional[str] = None
    conversation_id: Optional[str] = None


class ChannelAdapter(ABC):
    """Transport for one channel kind. The turn itself runs in ai_service."""

    channel_type: str = ""

    @abstractmethod
    def verify(self, db: Session, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        """Subscription handshake. Returns the challenge to echo, or None to reject."""

    @abstractmethod
    def ingest(self, payload: Any) -> List[InboundMessage]:
        """Extract the text messages carried by one inbound request."""

    @abstractmethod
    def resolve(self, db: Session, inbound: InboundMessage) -> Tuple[Bot, Channel]:
        """Bot and channel that should answer `inbound`. Raises NotFoundError."""

    def is_self_message(self, inbound: InboundMessage, channel: Channel) -> bool:
        return False

    @abstractmethod
    def deliver(self, channel: Channel, recipient_id: str, text: str) -> bool:
        """Push a reply to the visitor. Never raises; False when delivery failed."""
