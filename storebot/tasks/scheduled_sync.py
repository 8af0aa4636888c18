"""定期的なコンテンツ同期タスク

APSchedulerで一定間隔ごとに全テナントの鮮度を確認し、古いものだけ同期する。
"""

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from storebot.config import settings
from storebot.database import SessionLocal
from storebot.models.tenant import Tenant
from storebot.services.staleness import SCHEDULED_THRESHOLD, maybe_trigger_sync
from storebot.services.sync_jobs import sweep_stale_jobs

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def run_scheduled_sync(db=None, **start_kwargs) -> dict:
    """トークン登録済みの有効テナントを確認し、必要なら同期を開始する

    Returns:
        {"checked": 3, "started": 1, "errors": 0}
    """
    owns_session = db is None
    db = db or SessionLocal()
    result = {"checked": 0, "started": 0, "errors": 0}
    try:
        # running のまま固まったジョブを先に解放する
        try:
            sweep_stale_jobs(db)
        except Exception:
            db.rollback()
            logger.exception("Stale job sweep failed")

        tenants = (
            db.query(Tenant)
            .filter(Tenant.is_active.is_(True), Tenant.catalog_token.isnot(None))
            .all()
        )
        for tenant in tenants:
            result["checked"] += 1
            try:
                job = maybe_trigger_sync(
                    db, tenant, kind="scheduled", threshold=SCHEDULED_THRESHOLD,
                    **start_kwargs,
                )
                if job:
                    result["started"] += 1
            except Exception:
                db.rollback()
                result["errors"] += 1
                logger.exception("Scheduled sync failed for %s", tenant.domain)
    finally:
        if owns_session:
            db.close()

    if result["started"]:
        logger.info(
            "Scheduled sync: started %d of %d tenants", result["started"], result["checked"]
        )
    return result


def _sync_job():
    """スケジューラーから呼ばれるジョブ"""
    try:
        run_scheduled_sync()
    except Exception:
        logger.exception("Scheduled sync job failed")


def start_scheduler():
    interval = settings.sync_interval_minutes
    scheduler.add_job(
        _sync_job,
        "interval",
        minutes=interval,
        id="content_sync",
        replace_existing=True,
    )
    scheduler.start()
    logger.info("Content sync scheduler started (interval=%d min)", interval)


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Content sync scheduler stopped")
