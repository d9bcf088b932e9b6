from app.schemas.channel_config import InstagramConfig, WebsiteConfig, WhatsAppConfig, parse_channel_config
from app.schemas.widget import ChatRequest, ChatResponse, InitRequest, InitResponse

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "InitRequest",
    "InitResponse",
    "WebsiteConfig",
    "WhatsAppConfig",
    "InstagramConfig",
    "parse_channel_config",
]
