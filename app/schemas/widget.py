from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    embed_key: str = Field(min_length=1)
    message: str = Field(min_length=1)
    visitor_id: str = Field(min_length=1)
    conversation_id: Optional[str] = None
    visitor_name: Optional[str] = None
    visitor_email: Optional[str] = None


class ChatResponse(BaseModel):
    response: str
    conversation_id: UUID
    escalated: bool


class InitRequest(BaseModel):
    embed_key: str = Field(min_length=1)


class InitResponse(BaseModel):
    bot_name: str
    welcome_message: str
    channel_type: str
