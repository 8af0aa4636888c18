from datetime import datetime

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storebot.database import Base

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful shopping assistant for this store. Help customers find "
    "products, explain features, and guide them through their purchase."
)
DEFAULT_ERROR_MESSAGE = (
    "I apologize, but I'm having trouble right now. Please try again in a moment."
)


class Tenant(Base):
    """外部ストア（テナント）"""

    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True)
    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str | None] = mapped_column(String(255))
    locale: Mapped[str] = mapped_column(String(20), default="en")
    currency: Mapped[str] = mapped_column(String(10), default="USD")
    # 定期同期用のカタログAPIトークン（未設定なら定期同期の対象外）
    catalog_token: Mapped[str | None] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now()
    )

    bot_config: Mapped["BotConfig"] = relationship(
        back_populates="tenant", uselist=False, cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        return self.name or self.domain.split(".")[0]


class BotConfig(Base):
    """テナントごとのチャットボット設定"""

    __tablename__ = "bot_configs"

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), unique=True
    )
    bot_name: Mapped[str] = mapped_column(String(100), default="Shop Assistant")
    system_prompt: Mapped[str] = mapped_column(Text, default=DEFAULT_SYSTEM_PROMPT)
    error_message: Mapped[str] = mapped_column(Text, default=DEFAULT_ERROR_MESSAGE)
    temperature: Mapped[float] = mapped_column(Float, default=0.7)
    max_tokens: Mapped[int] = mapped_column(Integer, default=500)
    # テナント独自のモデルAPIキー（空なら環境設定のキーを使う）
    model_api_key: Mapped[str | None] = mapped_column(String(300))
    enable_analytics: Mapped[bool] = mapped_column(default=True)

    tenant: Mapped["Tenant"] = relationship(back_populates="bot_config")
