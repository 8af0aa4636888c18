from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storebot.api.chat import get_llm_provider
from storebot.database import get_db
from storebot.errors import ModelNotConfiguredError
from storebot.schemas.analytics import AnalyticsSummary, AskRequest, AskResponse, ExposureCreate
from storebot.services import analytics
from storebot.services.llm_client import LLMProvider
from storebot.services.tenants import get_tenant

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/{domain}", response_model=AnalyticsSummary)
def analytics_summary(
    domain: str,
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
):
    tenant = get_tenant(db, domain)
    return analytics.summarize(db, tenant.id, limit=limit)


@router.post("/{domain}/ask", response_model=AskResponse)
def ask_analytics(
    domain: str,
    data: AskRequest,
    db: Session = Depends(get_db),
    provider: LLMProvider | None = Depends(get_llm_provider),
):
    """集計データについてストア運営者が質問する"""
    tenant = get_tenant(db, domain)
    try:
        return analytics.ask_analytics(db, tenant, data.question, provider=provider)
    except ModelNotConfiguredError:
        raise HTTPException(status_code=400, detail="Model API key is not configured")


@router.post("/{domain}/products/{item_id:path}", status_code=202)
def record_product_event(
    domain: str,
    item_id: str,
    data: ExposureCreate,
    db: Session = Depends(get_db),
):
    """ウィジェットからの商品表示・購入イベント"""
    tenant = get_tenant(db, domain)
    analytics.record_product_exposure(db, tenant.id, item_id, data.title, data.kind)
    if data.session_id:
        analytics.record_session_product_event(
            db, tenant.id, data.session_id, item_id, data.kind, data.value
        )
    return {"status": "accepted"}
