import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from storebot.database import get_db
from storebot.schemas.chat import ChatRequest, ChatResponse
from storebot.services.chat_orchestrator import handle_chat_turn
from storebot.services.llm_client import LLMProvider
from storebot.services.tenants import find_tenant

logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])


def get_llm_provider() -> LLMProvider | None:
    """None ならテナント設定から都度プロバイダーを作る"""
    return None


@router.post("/chat", response_model=ChatResponse)
def chat(
    data: ChatRequest,
    db: Session = Depends(get_db),
    provider: LLMProvider | None = Depends(get_llm_provider),
):
    """ストアのチャットボットに1メッセージ送る

    リトライ待機でブロックするため同期関数（スレッドプールで実行）。
    """
    tenant = find_tenant(db, data.domain)
    if tenant is None or not tenant.is_active:
        raise HTTPException(status_code=404, detail="Chatbot not configured for this store")

    result = handle_chat_turn(
        db,
        tenant,
        session_id=data.session_id,
        fingerprint=data.fingerprint,
        user_message=data.message,
        provider=provider,
    )
    return ChatResponse(
        message=result.assistant_text,
        session_id=data.session_id,
        metadata=result.tool_metadata,
    )
