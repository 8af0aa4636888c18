from pydantic import BaseModel, Field


class ChatRequest(BaseModel):
    domain: str
    session_id: str = Field(min_length=1, max_length=100)
    fingerprint: str | None = None
    message: str = Field(min_length=1, max_length=4000)


class ChatResponse(BaseModel):
    message: str
    session_id: str
    metadata: dict | None = None  # 検索ツールの結果（カード表示用）
