from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from storebot.database import Base, utcnow

# item / article / collection / page
CATEGORIES = ("item", "article", "collection", "page")


class ContentRecord(Base):
    """外部カタログから同期した正規化済みコンテンツ（検索対象）"""

    __tablename__ = "content_records"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "category", "external_id", name="uq_content_tenant_category_ext"
        ),
        Index("ix_content_tenant_category", "tenant_id", "category"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    category: Mapped[str] = mapped_column(String(20))
    external_id: Mapped[str] = mapped_column(String(255))
    title: Mapped[str] = mapped_column(String(500))
    body: Mapped[str] = mapped_column(Text, default="")
    excerpt: Mapped[str] = mapped_column(Text, default="")
    url: Mapped[str | None] = mapped_column(String(500))
    tags: Mapped[str] = mapped_column(Text, default="")  # カンマ区切り
    search_blob: Mapped[str] = mapped_column(Text, default="")  # 小文字化済み
    keywords: Mapped[str] = mapped_column(Text, default="")  # カンマ区切り、最大20語
    published_at: Mapped[datetime | None] = mapped_column(DateTime)
    last_synced: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    is_active: Mapped[bool] = mapped_column(default=True)
