from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from app.models import Bot, Channel
from app.schemas.widget import ChatRequest
from app.services.ai_service import BotReply, generate_reply
from app.services.channel_resolver import resolve_by_embed_key
from app.services.channels.base import ChannelAdapter, InboundMessage
from app.services.conversation_service import get_conversation_for_bot


class WebsiteAdapter(ChannelAdapter):
    """Embedded widget: request/response, the reply travels in the HTTP body."""

    channel_type = "website"

    def verify(self, db: Session, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        return None

    def ingest(self, payload: ChatRequest) -> List[InboundMessage]:
        return [
            InboundMessage(
                channel_type=self.channel_type,
                account_id=payload.embed_key,
                sender_id=payload.visitor_id,
                text=payload.message,
                sender_name=payload.visitor_name,
                visitor_email=payload.visitor_email,
                conversation_id=payload.conversation_id,
            )
        ]

    def resolve(self, db: Session, inbound: InboundMessage) -> Tuple[Bot, Channel]:
        return resolve_by_embed_key(db, inbound.account_id)

    def deliver(self, channel: Channel, recipient_id: str, text: str) -> bool:
        return True

    def handle_turn(self, db: Session, payload: ChatRequest) -> BotReply:
        inbound = self.ingest(payload)[0]
        bot, channel = self.resolve(db, inbound)

        # A stale, resolved or foreign conversation id falls back to the visitor's open conversation.
        conversation = None
        if inbound.conversation_id:
            conversation = get_conversation_for_bot(db, inbound.conversation_id, bot.id, inbound.sender_id)

        reply = generate_reply(
            db,
            bot,
            self.channel_type,
            inbound.sender_id,
            inbound.text,
            conversation=conversation,
            visitor_name=inbound.sender_name,
            visitor_email=inbound.visitor_email,
        )
        self.deliver(channel, inbound.sender_id, reply.reply_text)
        return reply
