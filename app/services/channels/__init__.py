from app.errors import ValidationError
from app.services.channels.base import ChannelAdapter, InboundMessage
from app.services.channels.meta import InstagramAdapter, MetaAdapter, WhatsAppAdapter
from app.services.channels.webhook import WebhookResult, process_webhook
from app.services.channels.website import WebsiteAdapter

_ADAPTERS = {
    "website": WebsiteAdapter(),
    "whatsapp": WhatsAppAdapter(),
    "instagram": InstagramAdapter(),
}


def get_adapter(channel_type: str) -> ChannelAdapter:
    adapter = _ADAPTERS.get(channel_type)
    if adapter is None:
        raise ValidationError(f"Unsupported channel type: {channel_type}")
    return adapter


__all__ = [
    "ChannelAdapter",
    "InboundMessage",
    "WebsiteAdapter",
    "MetaAdapter",
    "WhatsAppAdapter",
    "InstagramAdapter",
    "WebhookResult",
    "get_adapter",
    "process_webhook",
]
