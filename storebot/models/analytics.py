from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storebot.database import Base, utcnow


class PopularQuestion(Base):
    """よくある質問の頻度カウンター"""

    __tablename__ = "popular_questions"
    __table_args__ = (
        UniqueConstraint("tenant_id", "question", name="uq_popular_question"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    question: Mapped[str] = mapped_column(String(1000))  # 正規化済み（小文字・trim）
    frequency: Mapped[int] = mapped_column(Integer, default=1)
    last_asked: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class ProductMetric(Base):
    """商品ごとの表示・推薦・購入カウンター"""

    __tablename__ = "product_metrics"
    __table_args__ = (
        UniqueConstraint("tenant_id", "item_id", name="uq_product_metric"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    item_id: Mapped[str] = mapped_column(String(255))
    item_title: Mapped[str] = mapped_column(String(500), default="")
    times_recommended: Mapped[int] = mapped_column(Integer, default=0)
    times_viewed: Mapped[int] = mapped_column(Integer, default=0)
    times_purchased: Mapped[int] = mapped_column(Integer, default=0)
    last_recommended: Mapped[datetime | None] = mapped_column(DateTime)


class ConversationMetric(Base):
    """会話セッションごとの結果（1セッション1行、ターンごとに更新）"""

    __tablename__ = "conversation_metrics"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_pk: Mapped[int] = mapped_column(
        ForeignKey("chat_sessions.id", ondelete="CASCADE"), unique=True
    )
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    # no_results / answered / recommended / purchase（後者ほど上位、下がらない）
    outcome: Mapped[str] = mapped_column(String(20), default="answered")
    duration_seconds: Mapped[int] = mapped_column(Integer, default=0)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    products_viewed: Mapped[str] = mapped_column(Text, default="[]")  # JSON（item_id のリスト）
    products_recommended: Mapped[str] = mapped_column(Text, default="[]")  # JSON
    conversion_value: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
