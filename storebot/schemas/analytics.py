from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ExposureCreate(BaseModel):
    kind: Literal["viewed", "recommended", "purchased"]
    title: str = ""
    session_id: str | None = Field(None, max_length=100)  # 会話セッションに紐付ける場合
    value: float | None = Field(None, ge=0)  # 購入金額


class QuestionStat(BaseModel):
    question: str
    frequency: int
    last_asked: datetime | None = None


class ProductStat(BaseModel):
    item_id: str
    title: str
    times_recommended: int
    times_viewed: int
    times_purchased: int
    last_recommended: datetime | None = None


class ConversationStats(BaseModel):
    total: int
    by_outcome: dict[str, int]
    purchase_conversations: int
    conversion_rate: float
    avg_duration_seconds: float
    avg_message_count: float
    total_revenue: float


class ConversationStat(BaseModel):
    session_id: str
    outcome: str
    duration_seconds: int
    message_count: int
    products_viewed: list[str]
    products_recommended: list[str]
    conversion_value: float
    updated_at: datetime | None = None


class AnalyticsSummary(BaseModel):
    top_questions: list[QuestionStat]
    top_products: list[ProductStat]
    conversations: ConversationStats
    recent_conversations: list[ConversationStat]


class AskRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)


class AskResponse(BaseModel):
    response: str
    has_data: bool
    summary: ConversationStats
