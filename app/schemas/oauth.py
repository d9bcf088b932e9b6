from pydantic import BaseModel, Field


class OAuthStartRequest(BaseModel):
    channel_id: str = Field(min_length=1)
    channel_type: str = Field(min_length=1)


class OAuthStartResponse(BaseModel):
    auth_url: str


class DisconnectRequest(BaseModel):
    channel_id: str = Field(min_length=1)


class SuccessResponse(BaseModel):
    success: bool = True


class ShopifyStartRequest(BaseModel):
    bot_id: str = Field(min_length=1)
    shop_domain: str = Field(min_length=1)


class ShopifyStartResponse(BaseModel):
    authorization_url: str


class ShopifyTestRequest(BaseModel):
    bot_id: str = Field(min_length=1)


class ShopifyTestResponse(BaseModel):
    success: bool
    shop_name: str | None = None
    domain: str | None = None
    error: str | None = None
