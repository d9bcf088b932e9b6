import re
from abc import abstractmethod
from typing import Any, List, Optional, Tuple

import httpx
from pydantic import ValidationError as PayloadValidationError
from sqlalchemy.orm import Session

from app.logging_config import get_logger
from app.models import Bot, Channel
from app.schemas.meta import InstagramEnvelope, WhatsAppEnvelope
from app.services.channel_resolver import find_channel_by_verify_token, resolve_by_provider_account
from app.services.channels.base import ChannelAdapter, InboundMessage
from app.services.meta_graph import MetaGraphClient, MetaGraphError

logger = get_logger("channels.meta")


class MetaAdapter(ChannelAdapter):
    """Shared handshake, routing and Graph API delivery for Meta messaging channels."""

    envelope_object: str = ""

    def __init__(self, graph_client: Optional[MetaGraphClient] = None):
        self._graph_client = graph_client

    @property
    def graph(self) -> MetaGraphClient:
        if self._graph_client is None:
            self._graph_client = MetaGraphClient()
        return self._graph_client

    def verify(self, db: Session, mode: Optional[str], token: Optional[str], challenge: Optional[str]) -> Optional[str]:
        if mode != "subscribe" or not token or challenge is None:
            return None
        channel = find_channel_by_verify_token(db, self.channel_type, token)
        if not channel:
            logger.warning("Webhook verification failed", extra={"context": {"channel_type": self.channel_type}})
            return None
        logger.info(
            "Webhook verified",
            extra={"context": {"channel_type": self.channel_type, "channel_id": str(channel.id)}},
        )
        return challenge

    def resolve(self, db: Session, inbound: InboundMessage) -> Tuple[Bot, Channel]:
        return resolve_by_provider_account(db, self.channel_type, inbound.account_id)

    @abstractmethod
    def build_send_payload(self, recipient_id: str, text: str) -> dict:
        """Graph API send body for a text reply."""

    def deliver(self, channel: Channel, recipient_id: str, text: str) -> bool:
        config = channel.provider_config
        sender_id = config.sender_account_id
        if not config.access_token or not sender_id:
            logger.error(
                "Cannot deliver reply: channel has no token or sender account",
                extra={"context": {"channel_id": str(channel.id)}},
            )
            return False

        try:
            self.graph.send_message(sender_id, config.access_token, self.build_send_payload(recipient_id, text))
        except (MetaGraphError, httpx.HTTPError) as e:
            logger.error(
                "Reply delivery failed",
                extra={"context": {"channel_id": str(channel.id), "channel_type": self.channel_type, "error": str(e)}},
            )
            return False
        return True


class WhatsAppAdapter(MetaAdapter):
    channel_type = "whatsapp"
    envelope_object = "whatsapp_business_account"

    def ingest(self, payload: Any) -> List[InboundMessage]:
        try:
            envelope = WhatsAppEnvelope.model_validate(payload)
        except PayloadValidationError as e:
            logger.warning("Malformed WhatsApp payload", extra={"context": {"error": str(e)}})
            return []
        if envelope.object != self.envelope_object:
            return []

        inbound = []
        for entry in envelope.entry:
            for change in entry.changes:
                value = change.value
                phone_number_id = value.metadata.phone_number_id if value.metadata else None
                if not phone_number_id:
                    continue
                names = {c.wa_id: c.profile.name for c in value.contacts if c.wa_id and c.profile}
                for message in value.messages:
                    # Only text messages get a reply.
                    if message.type != "text" or not message.text or not message.text.body:
                        continue
                    inbound.append(
                        InboundMessage(
                            channel_type=self.channel_type,
                            account_id=phone_number_id,
                            sender_id=message.from_,
                            text=message.text.body,
                            message_id=message.id,
                            sender_name=names.get(message.from_),
                        )
                    )
        return inbound

    def is_self_message(self, inbound: InboundMessage, channel: Channel) -> bool:
        config = channel.provider_config
        own_ids = {inbound.account_id, config.phone_number_id} - {None}
        if config.display_phone_number:
            own_ids.add(re.sub(r"\D", "", config.display_phone_number))
        return inbound.sender_id in own_ids

    def build_send_payload(self, recipient_id: str, text: str) -> dict:
        return {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient_id,
            "type": "text",
            "text": {"body": text},
        }


class InstagramAdapter(MetaAdapter):
    channel_type = "instagram"
    envelope_object = "instagram"

    def ingest(self, payload: Any) -> List[InboundMessage]:
        try:
            envelope = InstagramEnvelope.model_validate(payload)
        except PayloadValidationError as e:
            logger.warning("Malformed Instagram payload", extra={"context": {"error": str(e)}})
            return []
        if envelope.object != self.envelope_object:
            return []

        inbound = []
        for entry in envelope.entry:
            for event in entry.messaging:
                message = event.message
                if not message or not message.text or message.is_echo:
                    continue
                inbound.append(
                    InboundMessage(
                        channel_type=self.channel_type,
                        account_id=entry.id,
                        sender_id=event.sender.id,
                        text=message.text,
                        message_id=message.mid,
                    )
                )
        return inbound

    def is_self_message(self, inbound: InboundMessage, channel: Channel) -> bool:
        config = channel.provider_config
        own_ids = {inbound.account_id, config.page_id, config.instagram_account_id} - {None}
        return inbound.sender_id in own_ids

    def build_send_payload(self, recipient_id: str, text: str) -> dict:
        return {"recipient": {"id": recipient_id}, "message": {"text": text}}
