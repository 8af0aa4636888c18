from datetime import datetime

from pydantic import BaseModel, Field


class TenantCreate(BaseModel):
    domain: str = Field(min_length=3, max_length=255)
    name: str | None = None
    locale: str | None = None
    currency: str | None = None
    catalog_token: str | None = None  # 定期同期に使うトークン（応答には含めない）


class BotConfigRead(BaseModel):
    bot_name: str
    system_prompt: str
    error_message: str
    temperature: float
    max_tokens: int
    enable_analytics: bool

    model_config = {"from_attributes": True}


class TenantRead(BaseModel):
    id: int
    domain: str
    name: str | None = None
    locale: str
    currency: str
    is_active: bool
    created_at: datetime | None = None
    bot_config: BotConfigRead | None = None

    model_config = {"from_attributes": True}
