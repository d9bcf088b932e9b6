"""Inbound webhook envelopes as delivered by the WhatsApp Cloud API and Instagram Messaging."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class WhatsAppText(BaseModel):
    body: str = ""


class WhatsAppMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    from_: str = Field(alias="from")
    type: str = "text"
    timestamp: Optional[str] = None
    text: Optional[WhatsAppText] = None


class WhatsAppProfile(BaseModel):
    name: Optional[str] = None


class WhatsAppContact(BaseModel):
    wa_id: Optional[str] = None
    profile: Optional[WhatsAppProfile] = None


class WhatsAppMetadata(BaseModel):
    phone_number_id: Optional[str] = None
    display_phone_number: Optional[str] = None


class WhatsAppValue(BaseModel):
    metadata: Optional[WhatsAppMetadata] = None
    contacts: List[WhatsAppContact] = []
    messages: List[WhatsAppMessage] = []


class WhatsAppChange(BaseModel):
    field: Optional[str] = None
    value: WhatsAppValue = WhatsAppValue()


class WhatsAppEntry(BaseModel):
    id: Optional[str] = None
    changes: List[WhatsAppChange] = []


class WhatsAppEnvelope(BaseModel):
    object: Optional[str] = None
    entry: List[WhatsAppEntry] = []


class InstagramParticipant(BaseModel):
    id: str


class InstagramMessage(BaseModel):
    mid: Optional[str] = None
    text: Optional[str] = None
    is_echo: bool = False


class InstagramMessaging(BaseModel):
    sender: InstagramParticipant
    recipient: Optional[InstagramParticipant] = None
    timestamp: Optional[int] = None
    message: Optional[InstagramMessage] = None


class InstagramEntry(BaseModel):
    id: str
    time: Optional[int] = None
    messaging: List[InstagramMessaging] = []


class InstagramEnvelope(BaseModel):
    object: Optional[str] = None
    entry: List[InstagramEntry] = []
