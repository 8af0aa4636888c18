"""同期の鮮度判定

最後に完了した同期から一定時間が経過していれば「同期が必要」と判定する。
判定のみで、同期の開始は呼び出し側（maybe_trigger_sync）が行う。
"""

import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import utcnow
from storebot.errors import SyncAlreadyRunningError
from storebot.models.scraping_job import STATE_COMPLETED, ScrapingJob
from storebot.models.tenant import Tenant
from storebot.services import sync_jobs

logger = logging.getLogger(__name__)

# 対話起点は24時間、定期実行はタイマーの揺らぎを見込んで23時間
INTERACTIVE_THRESHOLD = timedelta(hours=settings.interactive_stale_hours)
SCHEDULED_THRESHOLD = timedelta(hours=settings.scheduled_stale_hours)


def last_completed_job(db: Session, tenant_id: int) -> ScrapingJob | None:
    return (
        db.query(ScrapingJob)
        .filter(
            ScrapingJob.tenant_id == tenant_id,
            ScrapingJob.state == STATE_COMPLETED,
        )
        .order_by(ScrapingJob.completed_at.desc())
        .first()
    )


def should_sync(
    db: Session,
    tenant_id: int,
    threshold: timedelta = INTERACTIVE_THRESHOLD,
    now: datetime | None = None,
) -> bool:
    last = last_completed_job(db, tenant_id)
    if last is None or last.completed_at is None:
        logger.info("Tenant %d: no completed sync yet - needs sync", tenant_id)
        return True

    elapsed = (now or utcnow()) - last.completed_at
    needed = elapsed >= threshold
    logger.debug(
        "Tenant %d: last synced %.1f hours ago - %s",
        tenant_id,
        elapsed.total_seconds() / 3600,
        "needs sync" if needed else "fresh",
    )
    return needed


def maybe_trigger_sync(
    db: Session,
    tenant: Tenant,
    kind: str = "background_trigger",
    threshold: timedelta = INTERACTIVE_THRESHOLD,
    **start_kwargs,
) -> ScrapingJob | None:
    """古ければ同期を開始する。開始したジョブ（しなければNone）を返す"""
    if not tenant.catalog_token and not start_kwargs.get("credential"):
        return None
    if not should_sync(db, tenant.id, threshold=threshold):
        return None
    try:
        return sync_jobs.start_job(db, tenant, kind, **start_kwargs)
    except SyncAlreadyRunningError:
        logger.info("Skipping auto-sync for %s - job already running", tenant.domain)
        return None
