"""会話分析の集計サービス

質問頻度・商品ごとの表示/推薦/購入回数をテナント単位でカウントし、
会話セッションごとの結果（outcome・所要時間・メッセージ数）を記録する。
集計結果を言語モデルに渡して、ストア運営者の質問に答えることもできる。
書き込みはベストエフォート: 失敗しても会話処理は止めない。
"""

import json
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from storebot.database import utcnow
from storebot.models.analytics import ConversationMetric, PopularQuestion, ProductMetric
from storebot.models.chat import ChatMessage, ChatSession
from storebot.models.tenant import Tenant
from storebot.services.llm_client import LLMProvider, call_with_retry, get_provider
from storebot.services.tenants import get_bot_config

logger = logging.getLogger(__name__)

MIN_QUESTION_LENGTH = 3
EXPOSURE_KINDS = {
    "viewed": "times_viewed",
    "recommended": "times_recommended",
    "purchased": "times_purchased",
}

# 後ろほど上位。セッションの outcome は上位にしか変わらない
OUTCOMES = ("no_results", "answered", "recommended", "purchase")
EVENT_OUTCOMES = {
    "viewed": "answered",
    "recommended": "recommended",
    "purchased": "purchase",
}

ASK_CONTEXT_LIMIT = 10
ASK_TEMPERATURE = 0.3
ASK_MAX_TOKENS = 800
NO_ANSWER = "I couldn't produce an answer from the analytics data."

ANALYST_PROMPT = """You are an analytics assistant for {store}'s shopping chatbot.
Answer the store owner's question using ONLY the data below.
Be concise and quote concrete numbers. Say so when the data is not enough.
Durations are in seconds. conversion_rate is a percentage.

DATA:
{data}"""


def normalize_question(raw_question: str) -> str:
    """小文字化・前後空白除去・連続空白の圧縮"""
    return " ".join((raw_question or "").lower().split())


def record_question(db: Session, tenant_id: int, raw_question: str) -> None:
    question = normalize_question(raw_question)
    if len(question) < MIN_QUESTION_LENGTH:
        return
    try:
        row = (
            db.query(PopularQuestion)
            .filter(
                PopularQuestion.tenant_id == tenant_id,
                PopularQuestion.question == question,
            )
            .first()
        )
        if row:
            row.frequency = PopularQuestion.frequency + 1
            row.last_asked = utcnow()
        else:
            db.add(PopularQuestion(
                tenant_id=tenant_id, question=question, frequency=1, last_asked=utcnow()
            ))
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("Failed to record popular question (tenant=%d)", tenant_id)


def record_product_exposure(
    db: Session, tenant_id: int, item_id: str, title: str, kind: str
) -> None:
    try:
        column = EXPOSURE_KINDS.get(kind)
        if column is None:
            raise ValueError(f"Unknown exposure kind: {kind}")

        row = (
            db.query(ProductMetric)
            .filter(ProductMetric.tenant_id == tenant_id, ProductMetric.item_id == item_id)
            .first()
        )
        if row is None:
            row = ProductMetric(
                tenant_id=tenant_id,
                item_id=item_id,
                item_title=title or "",
                times_recommended=0,
                times_viewed=0,
                times_purchased=0,
            )
            db.add(row)
            db.flush()

        setattr(row, column, getattr(ProductMetric, column) + 1)
        if kind == "recommended":
            row.last_recommended = utcnow()
        if title:
            row.item_title = title
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to record product exposure (tenant=%d, item=%s, kind=%s)",
            tenant_id, item_id, kind,
        )


def _merge_ids(raw: str | None, new_ids) -> str:
    ids = json.loads(raw) if raw else []
    for item_id in new_ids:
        if item_id not in ids:
            ids.append(item_id)
    return json.dumps(ids)


def _raise_outcome(row: ConversationMetric, outcome: str) -> None:
    if OUTCOMES.index(outcome) > OUTCOMES.index(row.outcome):
        row.outcome = outcome


def _get_or_create_metric(
    db: Session, tenant_id: int, session: ChatSession, outcome: str
) -> ConversationMetric:
    row = (
        db.query(ConversationMetric)
        .filter(ConversationMetric.session_pk == session.id)
        .first()
    )
    if row is None:
        row = ConversationMetric(
            session_pk=session.id,
            tenant_id=tenant_id,
            outcome=outcome,
            duration_seconds=0,
            message_count=0,
            products_viewed="[]",
            products_recommended="[]",
            conversion_value=0.0,
        )
        db.add(row)
        db.flush()
    return row


def record_conversation_turn(
    db: Session,
    tenant_id: int,
    session: ChatSession,
    outcome: str,
    recommended_ids=(),
) -> None:
    """ターン終了時にセッションの結果を更新する"""
    try:
        if outcome not in OUTCOMES:
            raise ValueError(f"Unknown conversation outcome: {outcome}")
        row = _get_or_create_metric(db, tenant_id, session, outcome)
        _raise_outcome(row, outcome)
        row.message_count = (
            db.query(ChatMessage).filter(ChatMessage.session_pk == session.id).count()
        )
        started = session.created_at or row.created_at or utcnow()
        row.duration_seconds = max(0, int((utcnow() - started).total_seconds()))
        row.products_recommended = _merge_ids(row.products_recommended, recommended_ids)
        row.updated_at = utcnow()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to record conversation metric (tenant=%d, session=%s)",
            tenant_id, session.session_id,
        )


def record_session_product_event(
    db: Session,
    tenant_id: int,
    session_id: str,
    item_id: str,
    kind: str,
    value: float | None = None,
) -> None:
    """ウィジェットの商品イベントを会話セッションの結果に反映する"""
    try:
        outcome = EVENT_OUTCOMES.get(kind)
        if outcome is None:
            raise ValueError(f"Unknown exposure kind: {kind}")
        session = (
            db.query(ChatSession)
            .filter(ChatSession.session_id == session_id, ChatSession.tenant_id == tenant_id)
            .first()
        )
        if session is None:
            logger.info("Product event for unknown session %s ignored", session_id)
            return

        row = _get_or_create_metric(db, tenant_id, session, outcome)
        _raise_outcome(row, outcome)
        if kind == "viewed":
            row.products_viewed = _merge_ids(row.products_viewed, [item_id])
        elif kind == "recommended":
            row.products_recommended = _merge_ids(row.products_recommended, [item_id])
        elif value:
            row.conversion_value = (row.conversion_value or 0.0) + value
        row.updated_at = utcnow()
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "Failed to record session product event (tenant=%d, session=%s, kind=%s)",
            tenant_id, session_id, kind,
        )


def _conversation_stats(db: Session, tenant_id: int) -> dict:
    total, avg_duration, avg_messages, revenue = (
        db.query(
            func.count(ConversationMetric.id),
            func.avg(ConversationMetric.duration_seconds),
            func.avg(ConversationMetric.message_count),
            func.sum(ConversationMetric.conversion_value),
        )
        .filter(ConversationMetric.tenant_id == tenant_id)
        .one()
    )
    by_outcome = dict(
        db.query(ConversationMetric.outcome, func.count(ConversationMetric.id))
        .filter(ConversationMetric.tenant_id == tenant_id)
        .group_by(ConversationMetric.outcome)
        .all()
    )
    purchases = by_outcome.get("purchase", 0)
    return {
        "total": total,
        "by_outcome": by_outcome,
        "purchase_conversations": purchases,
        "conversion_rate": round(100 * purchases / total, 1) if total else 0.0,
        "avg_duration_seconds": round(avg_duration or 0, 1),
        "avg_message_count": round(avg_messages or 0, 1),
        "total_revenue": round(revenue or 0, 2),
    }


def _recent_conversations(db: Session, tenant_id: int, limit: int) -> list[dict]:
    rows = (
        db.query(ConversationMetric, ChatSession.session_id)
        .join(ChatSession, ChatSession.id == ConversationMetric.session_pk)
        .filter(ConversationMetric.tenant_id == tenant_id)
        .order_by(ConversationMetric.updated_at.desc(), ConversationMetric.id.desc())
        .limit(limit)
        .all()
    )
    return [
        {
            "session_id": session_id,
            "outcome": m.outcome,
            "duration_seconds": m.duration_seconds,
            "message_count": m.message_count,
            "products_viewed": json.loads(m.products_viewed or "[]"),
            "products_recommended": json.loads(m.products_recommended or "[]"),
            "conversion_value": m.conversion_value,
            "updated_at": m.updated_at,
        }
        for m, session_id in rows
    ]


def summarize(db: Session, tenant_id: int, limit: int = 10) -> dict:
    """よくある質問・推薦回数上位の商品・会話セッションの集計を返す"""
    questions = (
        db.query(PopularQuestion)
        .filter(PopularQuestion.tenant_id == tenant_id)
        .order_by(PopularQuestion.frequency.desc(), PopularQuestion.last_asked.desc())
        .limit(limit)
        .all()
    )
    products = (
        db.query(ProductMetric)
        .filter(ProductMetric.tenant_id == tenant_id)
        .order_by(ProductMetric.times_recommended.desc(), ProductMetric.id)
        .limit(limit)
        .all()
    )
    return {
        "top_questions": [
            {"question": q.question, "frequency": q.frequency, "last_asked": q.last_asked}
            for q in questions
        ],
        "top_products": [
            {
                "item_id": p.item_id,
                "title": p.item_title,
                "times_recommended": p.times_recommended,
                "times_viewed": p.times_viewed,
                "times_purchased": p.times_purchased,
                "last_recommended": p.last_recommended,
            }
            for p in products
        ],
        "conversations": _conversation_stats(db, tenant_id),
        "recent_conversations": _recent_conversations(db, tenant_id, limit),
    }


def ask_analytics(
    db: Session,
    tenant: Tenant,
    question: str,
    provider: LLMProvider | None = None,
) -> dict:
    """集計データを文脈にして、ストア運営者の質問に言語モデルで答える

    Returns:
        {"response": "...", "has_data": True, "summary": {...会話の集計...}}

    Raises:
        ModelNotConfiguredError: APIキーが未設定
        ModelCallError: モデル呼び出しの失敗
    """
    data = summarize(db, tenant.id, limit=ASK_CONTEXT_LIMIT)
    has_data = bool(
        data["top_questions"] or data["top_products"] or data["conversations"]["total"]
    )
    if provider is None:
        provider = get_provider(get_bot_config(db, tenant).model_api_key)

    system = ANALYST_PROMPT.format(
        store=tenant.display_name,
        data=json.dumps(data, default=str, ensure_ascii=False, indent=2),
    )
    reply = call_with_retry(lambda: provider.complete(
        system,
        [{"role": "user", "content": question}],
        ASK_TEMPERATURE,
        ASK_MAX_TOKENS,
    ))
    logger.info("Answered analytics question for %s (has_data=%s)", tenant.domain, has_data)
    return {
        "response": reply.text or NO_ANSWER,
        "has_data": has_data,
        "summary": data["conversations"],
    }
