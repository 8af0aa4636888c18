"""ストア専用チャットの会話処理

処理フロー（1リクエスト = 1ターン）:
1. セッションを取得（なければ作成。同時作成は後勝ちで既存行を読む）
2. ユーザーメッセージを保存
3. プロンプト組み立て（固定指示 + ストア情報 + 直近の履歴 + 新しいメッセージ）
4. モデル呼び出し（レート制限時のみリトライ）
5. ツール呼び出しがあれば検索を実行し、結果を付けてもう1回だけ呼び出す
6. アシスタントメッセージを保存
7. 分析カウンターとセッションの結果を更新（失敗しても無視）
"""

import json
import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.errors import ModelNotConfiguredError
from storebot.models.chat import ChatMessage, ChatSession
from storebot.models.content import CATEGORIES
from storebot.models.tenant import BotConfig, Tenant
from storebot.services import analytics, retrieval
from storebot.services.content_store import count_by_category, list_titles
from storebot.services.llm_client import (
    LLMProvider,
    ModelReply,
    ToolCall,
    call_with_retry,
    get_provider,
)
from storebot.services.staleness import maybe_trigger_sync
from storebot.services.tenants import get_bot_config

logger = logging.getLogger(__name__)

SEARCH_TOOL_NAME = "search_store_content"

SEARCH_TOOL = {
    "name": SEARCH_TOOL_NAME,
    "description": (
        "Search the store's own content (products, articles, collections, pages) "
        "that has been synced into the knowledge base. Use it before answering "
        "any question about products or store information."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "query": {
                "type": "string",
                "description": "Search terms. Use specific words from the customer's request.",
            },
            "content_types": {
                "type": "array",
                "items": {"type": "string", "enum": list(CATEGORIES)},
                "description": "Optional list of content types to search.",
            },
            "limit": {
                "type": "integer",
                "description": "Number of results (default 5, max 8).",
            },
        },
        "required": [],
    },
}

INSTRUCTIONS = """\
RESPONSE GUIDELINES:
- You are a helpful shopping assistant. Keep answers short and friendly.
- Never include URLs, internal IDs or technical details in your replies.
- Result cards are shown to the customer automatically; do not repeat prices or full descriptions.
- Ask one brief clarifying question when the request is ambiguous.

STRICT STORE-ONLY POLICY:
- Answer ONLY using information from this store (products, collections, pages, articles).
- Do not use outside knowledge. If the customer asks about unrelated topics, reply:
  "I can help with information and products from this store only."
- Use the search_store_content tool before answering questions about the store's content."""

FALLBACK_ACKNOWLEDGEMENT = "Here's what I found in our store."
NO_RESULTS_REPLY = (
    "I couldn't find anything matching that in our store. "
    "Could you try describing it differently?"
)
CLARIFY_REPLY = "Could you tell me a little more about what you're looking for?"
MAX_TOOL_LIMIT = 8


@dataclass
class ChatTurnResult:
    assistant_text: str
    tool_metadata: dict | None = None
    session_id: str | None = None
    failed: bool = False


class MalformedToolCallError(ValueError):
    """モデルのツール呼び出し引数が不正"""


def _find_session(db: Session, session_id: str) -> ChatSession | None:
    return db.query(ChatSession).filter(ChatSession.session_id == session_id).first()


def _check_owner(session: ChatSession, tenant: Tenant) -> ChatSession:
    if session.tenant_id != tenant.id:
        raise ValueError(f"Session {session.session_id} belongs to another tenant")
    return session


def load_or_create_session(
    db: Session,
    tenant: Tenant,
    session_id: str,
    fingerprint: str | None = None,
) -> ChatSession:
    """session_id でセッションを取得し、なければ作成する"""
    session = _find_session(db, session_id)
    if session:
        return _check_owner(session, tenant)

    session = ChatSession(
        session_id=session_id,
        tenant_id=tenant.id,
        fingerprint=fingerprint,
        locale=tenant.locale or "en",
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        # 同じ session_id の同時リクエストが先に作成した
        db.rollback()
        session = _find_session(db, session_id)
        if session is None:
            raise
        return _check_owner(session, tenant)
    db.refresh(session)
    return session


def append_message(
    db: Session,
    session: ChatSession,
    role: str,
    content: str,
    metadata: dict | None = None,
) -> ChatMessage:
    message = ChatMessage(
        session_pk=session.id,
        role=role,
        content=content,
        metadata_json=json.dumps(metadata, default=str) if metadata is not None else None,
    )
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def recent_history(
    db: Session, session: ChatSession, exclude_id: int | None = None, window: int | None = None
) -> list[dict]:
    """直近 window 件の user/assistant メッセージ（古い順）。それより前は捨てる"""
    window = window or settings.history_window
    query = db.query(ChatMessage).filter(
        ChatMessage.session_pk == session.id,
        ChatMessage.role.in_(("user", "assistant")),
    )
    if exclude_id is not None:
        query = query.filter(ChatMessage.id != exclude_id)
    rows = (
        query.order_by(ChatMessage.timestamp.desc(), ChatMessage.id.desc())
        .limit(window)
        .all()
    )
    history = [{"role": m.role, "content": m.content} for m in reversed(rows) if m.content]
    # 先頭は user でなければならない
    while history and history[0]["role"] != "user":
        history.pop(0)
    return history


def build_system_prompt(db: Session, tenant: Tenant, bot_config: BotConfig) -> str:
    counts = count_by_category(db, tenant.id)
    available = ", ".join(
        f"{category} ({counts[category]})" for category in CATEGORIES if counts.get(category)
    )
    collections = list_titles(db, tenant.id, "collection", limit=10)

    lines = [
        bot_config.system_prompt,
        "",
        "Store Information:",
        f"- Store: {tenant.display_name}",
        f"- Domain: {tenant.domain}",
        f"- Currency: {tenant.currency}",
        f"- Content available: {available or 'none synced yet'}",
    ]
    if collections:
        lines.append(f"- Collections: {', '.join(collections)}")
    lines += ["", INSTRUCTIONS]
    return "\n".join(lines)


def _parse_tool_arguments(call: ToolCall) -> tuple[str, list[str] | None, int]:
    if call.name != SEARCH_TOOL_NAME:
        raise MalformedToolCallError(f"Unknown tool: {call.name}")
    args = call.arguments
    if not isinstance(args, dict):
        raise MalformedToolCallError("Tool arguments must be an object")

    query = args.get("query") or ""
    if not isinstance(query, str):
        raise MalformedToolCallError("query must be a string")

    content_types = args.get("content_types") or None
    if content_types is not None:
        if not isinstance(content_types, list) or any(
            c not in CATEGORIES for c in content_types
        ):
            raise MalformedToolCallError(f"Invalid content_types: {content_types!r}")

    try:
        limit = int(args.get("limit") or 5)
    except (TypeError, ValueError) as e:
        raise MalformedToolCallError(f"Invalid limit: {args.get('limit')!r}") from e
    return query, content_types, max(1, min(limit, MAX_TOOL_LIMIT))


def run_search_tool(db: Session, tenant: Tenant, call: ToolCall) -> dict:
    """検索ツールを実行し、モデルに渡す結果を返す"""
    query, content_types, limit = _parse_tool_arguments(call)
    hits = retrieval.search(db, tenant.id, query, content_types, limit)
    logger.info(
        "Tool %s(query=%r, types=%s) -> %d hits", call.name, query, content_types, len(hits)
    )
    return retrieval.serialize_hits(hits, query, content_types)


def _follow_up(
    provider: LLMProvider,
    system: str,
    messages: list[dict],
    reply: ModelReply,
    tool_result: dict,
    bot_config: BotConfig,
) -> str:
    """ツール結果を付けてもう1回だけモデルを呼ぶ。失敗時は定型文"""
    follow_messages = messages + [
        reply.as_assistant_message(),
        {
            "role": "user",
            "content": [{
                "type": "tool_result",
                "tool_use_id": reply.tool_call.id,
                "content": json.dumps(tool_result, default=str),
            }],
        },
    ]
    try:
        follow = call_with_retry(lambda: provider.complete(
            system,
            follow_messages,
            bot_config.temperature,
            bot_config.max_tokens,
            tools=[SEARCH_TOOL],
        ))
    except Exception:
        logger.exception("Follow-up model call failed")
        return FALLBACK_ACKNOWLEDGEMENT
    return follow.text


def _turn_outcome(tool_result: dict | None, recommended_ids: list[str]) -> str:
    if tool_result is None:
        return "answered"
    if not tool_result["items"]:
        return "no_results"
    return "recommended" if recommended_ids else "answered"


def _record_analytics(
    db: Session,
    tenant: Tenant,
    session: ChatSession,
    question: str,
    tool_result: dict | None,
):
    analytics.record_question(db, tenant.id, question)
    recommended = []
    if tool_result:
        # 表示（viewed）はウィジェットからのイベントで数える
        for item in tool_result.get("items", []):
            if item.get("category") != "item":
                continue
            analytics.record_product_exposure(
                db, tenant.id, item["id"], item["title"], "recommended"
            )
            recommended.append(item["id"])
    analytics.record_conversation_turn(
        db, tenant.id, session, _turn_outcome(tool_result, recommended), recommended
    )


def handle_chat_turn(
    db: Session,
    tenant: Tenant,
    session_id: str,
    fingerprint: str | None,
    user_message: str,
    provider: LLMProvider | None = None,
) -> ChatTurnResult:
    """1ターン分の会話を処理する。内部エラーの詳細は応答に含めない"""
    bot_config = get_bot_config(db, tenant)
    error_message = bot_config.error_message or settings.default_error_message

    try:
        session = load_or_create_session(db, tenant, session_id, fingerprint)
        user_row = append_message(db, session, "user", user_message)
    except Exception:
        db.rollback()
        logger.exception("Failed to store user message (session=%s)", session_id)
        return ChatTurnResult(error_message, session_id=session_id, failed=True)

    tool_result = None
    try:
        provider = provider or get_provider(bot_config.model_api_key)
        system = build_system_prompt(db, tenant, bot_config)
        messages = recent_history(db, session, exclude_id=user_row.id) + [
            {"role": "user", "content": user_message}
        ]

        reply = call_with_retry(lambda: provider.complete(
            system,
            messages,
            bot_config.temperature,
            bot_config.max_tokens,
            tools=[SEARCH_TOOL],
        ))
        assistant_text = reply.text

        if reply.tool_call:
            tool_result = run_search_tool(db, tenant, reply.tool_call)
            assistant_text = _follow_up(
                provider, system, messages, reply, tool_result, bot_config
            )
            if not assistant_text:
                assistant_text = (
                    FALLBACK_ACKNOWLEDGEMENT if tool_result["items"] else NO_RESULTS_REPLY
                )
        elif not assistant_text:
            assistant_text = CLARIFY_REPLY

        append_message(db, session, "assistant", assistant_text, metadata=tool_result)
    except ModelNotConfiguredError:
        logger.warning("No model credential configured for %s", tenant.domain)
        return ChatTurnResult(error_message, session_id=session_id, failed=True)
    except Exception:
        db.rollback()
        logger.exception("Chat turn failed (tenant=%s, session=%s)", tenant.domain, session_id)
        return ChatTurnResult(error_message, session_id=session_id, failed=True)

    if bot_config.enable_analytics:
        _record_analytics(db, tenant, session, user_message, tool_result)

    if settings.auto_sync_on_chat:
        try:
            maybe_trigger_sync(db, tenant)
        except Exception:
            db.rollback()
            logger.exception("Auto-sync trigger failed for %s", tenant.domain)

    return ChatTurnResult(assistant_text, tool_metadata=tool_result, session_id=session_id)
