"""Typed provider configuration stored in bot_channels.config.

The column holds one JSON object per channel; its shape depends on the channel
kind. Rows are parsed into a discriminated union keyed by ``kind`` so callers
never read raw dict keys.
"""

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator


class BaseChannelConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    connected: bool = False
    access_token: Optional[str] = None
    webhook_verify_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _connected_requires_token(self):
        if self.connected and not self.access_token:
            raise ValueError("connected channel config requires an access_token")
        return self


class WebsiteConfig(BaseChannelConfig):
    kind: Literal["website"] = "website"


class WhatsAppConfig(BaseChannelConfig):
    kind: Literal["whatsapp"] = "whatsapp"
    business_account_id: Optional[str] = None
    business_name: Optional[str] = None
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None
    verified_name: Optional[str] = None

    def matches_account(self, account_id: str) -> bool:
        return bool(account_id) and self.phone_number_id == account_id

    @property
    def sender_account_id(self) -> Optional[str]:
        return self.phone_number_id


class InstagramConfig(BaseChannelConfig):
    kind: Literal["instagram"] = "instagram"
    page_id: Optional[str] = None
    page_name: Optional[str] = None
    instagram_account_id: Optional[str] = None
    instagram_username: Optional[str] = None
    # Long-lived user token the page token is derived from; needed for refresh.
    user_access_token: Optional[str] = None
    webhook_subscribed: bool = False

    def matches_account(self, account_id: str) -> bool:
        return bool(account_id) and account_id in (self.page_id, self.instagram_account_id)

    @property
    def sender_account_id(self) -> Optional[str]:
        return self.page_id


ChannelConfig = Annotated[
    Union[WebsiteConfig, WhatsAppConfig, InstagramConfig],
    Field(discriminator="kind"),
]

_channel_config_adapter = TypeAdapter(ChannelConfig)


def parse_channel_config(channel_type: str, raw: Optional[dict]) -> ChannelConfig:
    """Validate a stored config blob; ``kind`` always follows the channel row."""
    data = dict(raw or {})
    data["kind"] = channel_type
    return _channel_config_adapter.validate_python(data)


def disconnected_config(config: ChannelConfig) -> ChannelConfig:
    """Drop credentials but keep routing identifiers for a later reconnect."""
    updates = {"connected": False, "access_token": None, "token_expires_at": None}
    if isinstance(config, InstagramConfig):
        updates["user_access_token"] = None
        updates["webhook_subscribed"] = False
    return config.model_copy(update=updates)
