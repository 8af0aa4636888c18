import json

import pytest

from fakes import FakeProvider, text_reply
from storebot.config import settings
from storebot.errors import ModelNotConfiguredError
from storebot.models.analytics import ConversationMetric, PopularQuestion, ProductMetric
from storebot.models.chat import ChatMessage, ChatSession
from storebot.services import analytics
from storebot.services.tenants import get_or_create_tenant


def test_equivalent_questions_share_one_counter(db, tenant):
    analytics.record_question(db, tenant.id, "Do you ship to Canada?")
    analytics.record_question(db, tenant.id, "  do you SHIP to   canada? ")

    rows = db.query(PopularQuestion).filter(PopularQuestion.tenant_id == tenant.id).all()
    assert len(rows) == 1
    assert rows[0].question == "do you ship to canada?"
    assert rows[0].frequency == 2


def test_questions_are_counted_per_tenant(db, tenant):
    other = get_or_create_tenant(db, "other-store.myshopify.com")
    analytics.record_question(db, tenant.id, "Where is my order?")
    analytics.record_question(db, other.id, "Where is my order?")

    assert db.query(PopularQuestion).count() == 2


def test_very_short_questions_are_ignored(db, tenant):
    analytics.record_question(db, tenant.id, " ok ")
    assert db.query(PopularQuestion).count() == 0


def test_product_exposure_counters(db, tenant):
    for kind in ("viewed", "viewed", "recommended", "purchased"):
        analytics.record_product_exposure(db, tenant.id, "p1", "Diet Chocolate Bar", kind)

    metric = db.query(ProductMetric).one()
    assert (metric.times_viewed, metric.times_recommended, metric.times_purchased) == (2, 1, 1)
    assert metric.item_title == "Diet Chocolate Bar"
    assert metric.last_recommended is not None


def test_unknown_exposure_kind_is_ignored(db, tenant):
    analytics.record_product_exposure(db, tenant.id, "p1", "Bar", "shared")
    assert db.query(ProductMetric).count() == 0


def test_summarize_orders_by_frequency(db, tenant):
    for question in ("Is it vegan?", "Is it vegan?", "Do you ship?"):
        analytics.record_question(db, tenant.id, question)
    analytics.record_product_exposure(db, tenant.id, "p1", "Vanilla Bar", "recommended")
    analytics.record_product_exposure(db, tenant.id, "p2", "Diet Chocolate Bar", "recommended")
    analytics.record_product_exposure(db, tenant.id, "p2", "Diet Chocolate Bar", "recommended")

    summary = analytics.summarize(db, tenant.id)

    assert [q["question"] for q in summary["top_questions"]] == ["is it vegan?", "do you ship?"]
    assert summary["top_questions"][0]["frequency"] == 2
    assert [p["item_id"] for p in summary["top_products"]] == ["p2", "p1"]
    assert summary["conversations"]["total"] == 0
    assert summary["recent_conversations"] == []


def _chat_session(db, tenant, session_id="sess-1", messages=2):
    session = ChatSession(session_id=session_id, tenant_id=tenant.id)
    db.add(session)
    db.commit()
    for i in range(messages):
        db.add(ChatMessage(
            session_pk=session.id, role="user" if i % 2 == 0 else "assistant", content="hi"
        ))
    db.commit()
    return session


def test_conversation_turn_is_recorded_per_session(db, tenant):
    session = _chat_session(db, tenant)

    analytics.record_conversation_turn(db, tenant.id, session, "recommended", ["p1", "p2"])
    analytics.record_conversation_turn(db, tenant.id, session, "no_results", ["p1"])

    row = db.query(ConversationMetric).one()
    assert row.outcome == "recommended"
    assert row.message_count == 2
    assert row.duration_seconds >= 0
    assert json.loads(row.products_recommended) == ["p1", "p2"]


def test_unknown_outcome_is_ignored(db, tenant):
    session = _chat_session(db, tenant)
    analytics.record_conversation_turn(db, tenant.id, session, "delighted")
    assert db.query(ConversationMetric).count() == 0


def test_session_product_events_update_the_conversation(db, tenant):
    session = _chat_session(db, tenant)
    analytics.record_conversation_turn(db, tenant.id, session, "answered")

    analytics.record_session_product_event(db, tenant.id, "sess-1", "p1", "viewed")
    analytics.record_session_product_event(db, tenant.id, "sess-1", "p1", "purchased", 24.5)
    analytics.record_session_product_event(db, tenant.id, "sess-1", "p2", "purchased", 10)

    row = db.query(ConversationMetric).one()
    assert row.outcome == "purchase"
    assert json.loads(row.products_viewed) == ["p1"]
    assert row.conversion_value == 34.5


def test_product_event_for_unknown_session_is_ignored(db, tenant):
    analytics.record_session_product_event(db, tenant.id, "missing", "p1", "purchased", 5)
    assert db.query(ConversationMetric).count() == 0


def test_product_event_does_not_cross_tenants(db, tenant):
    other = get_or_create_tenant(db, "other-store.myshopify.com")
    _chat_session(db, other)
    analytics.record_session_product_event(db, tenant.id, "sess-1", "p1", "purchased", 5)
    assert db.query(ConversationMetric).count() == 0


def test_summarize_conversation_stats(db, tenant):
    bought = _chat_session(db, tenant, "sess-1", messages=4)
    browsed = _chat_session(db, tenant, "sess-2", messages=2)
    analytics.record_conversation_turn(db, tenant.id, bought, "recommended", ["p1"])
    analytics.record_session_product_event(db, tenant.id, "sess-1", "p1", "purchased", 20)
    analytics.record_conversation_turn(db, tenant.id, browsed, "answered")

    summary = analytics.summarize(db, tenant.id)

    stats = summary["conversations"]
    assert stats["total"] == 2
    assert stats["by_outcome"] == {"purchase": 1, "answered": 1}
    assert stats["purchase_conversations"] == 1
    assert stats["conversion_rate"] == 50.0
    assert stats["avg_message_count"] == 3.0
    assert stats["total_revenue"] == 20.0
    assert {c["session_id"] for c in summary["recent_conversations"]} == {"sess-1", "sess-2"}


def test_ask_analytics_sends_the_data_to_the_model(db, tenant):
    analytics.record_question(db, tenant.id, "Is it vegan?")
    provider = FakeProvider(text_reply("Vegan questions are the most common."))

    result = analytics.ask_analytics(db, tenant, "What do customers ask about?", provider)

    assert result["response"] == "Vegan questions are the most common."
    assert result["has_data"] is True
    assert result["summary"]["total"] == 0
    call = provider.calls[0]
    assert "Demo Store" in call["system"]
    assert "is it vegan?" in call["system"]
    assert call["messages"] == [{"role": "user", "content": "What do customers ask about?"}]
    assert (call["temperature"], call["max_tokens"]) == (0.3, 800)
    assert call["tools"] is None


def test_ask_analytics_without_data(db, tenant):
    result = analytics.ask_analytics(db, tenant, "How are we doing?", FakeProvider(text_reply("")))
    assert result["has_data"] is False
    assert result["response"] == analytics.NO_ANSWER


def test_ask_analytics_requires_model_key(db, tenant, monkeypatch):
    monkeypatch.setattr(settings, "anthropic_api_key", "")
    with pytest.raises(ModelNotConfiguredError):
        analytics.ask_analytics(db, tenant, "How are we doing?")
