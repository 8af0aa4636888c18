from datetime import datetime

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from storebot.database import Base, utcnow

JOB_KINDS = ("manual", "scheduled", "background_trigger")

STATE_PENDING = "pending"
STATE_RUNNING = "running"
STATE_COMPLETED = "completed"
STATE_FAILED = "failed"
TERMINAL_STATES = (STATE_COMPLETED, STATE_FAILED)


class ScrapingJob(Base):
    """コンテンツ同期ジョブ（1回の同期実行）"""

    __tablename__ = "scraping_jobs"
    __table_args__ = (
        # テナントごとに running は1件まで（部分ユニークインデックス）
        Index(
            "uq_scraping_jobs_one_running",
            "tenant_id",
            unique=True,
            sqlite_where=text("state = 'running'"),
            postgresql_where=text("state = 'running'"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id", ondelete="CASCADE"), index=True
    )
    kind: Mapped[str] = mapped_column(String(30))  # manual / scheduled / background_trigger
    state: Mapped[str] = mapped_column(String(20), default=STATE_PENDING)
    progress: Mapped[int] = mapped_column(Integer, default=0)  # 0-100
    items_found: Mapped[int] = mapped_column(Integer, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    error_message: Mapped[str | None] = mapped_column(Text)
    started_at: Mapped[datetime | None] = mapped_column(DateTime)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES
