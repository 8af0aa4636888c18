"""コンテンツ同期ジョブの管理サービス

フロー:
1. start_job: 実行中ジョブがなければ running でジョブを作成し、
   パイプラインをワーカースレッドに投入してすぐに返す
2. run_pipeline: カテゴリごとに 取得 → 正規化 → 置換 を順番に実行
   - アクセス拒否のカテゴリはスキップして続行
   - それ以外の例外は最外周で捕捉し、ジョブを failed にする
3. 終了状態（completed / failed）は一度書いたら変更しない
"""

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import SessionLocal, utcnow
from storebot.errors import (
    CatalogNotConfiguredError,
    CatalogPermissionError,
    SyncAlreadyRunningError,
)
from storebot.models.scraping_job import (
    JOB_KINDS,
    STATE_COMPLETED,
    STATE_FAILED,
    STATE_RUNNING,
    ScrapingJob,
)
from storebot.models.tenant import Tenant
from storebot.services.catalog_client import CatalogClient
from storebot.services.content_store import count_by_category, replace_category
from storebot.services.normalizer import normalize

logger = logging.getLogger(__name__)

CATEGORY_ORDER = ("item", "article", "collection", "page")
MAX_ERROR_LENGTH = 2000

_executor = ThreadPoolExecutor(
    max_workers=settings.sync_workers, thread_name_prefix="content-sync"
)


def _submit(fn: Callable, *args) -> None:
    _executor.submit(fn, *args)


def shutdown_executor() -> None:
    _executor.shutdown(wait=False, cancel_futures=True)


def find_running_job(db: Session, tenant_id: int) -> ScrapingJob | None:
    return (
        db.query(ScrapingJob)
        .filter(ScrapingJob.tenant_id == tenant_id, ScrapingJob.state == STATE_RUNNING)
        .first()
    )


def start_job(
    db: Session,
    tenant: Tenant,
    kind: str,
    credential: str | None = None,
    dispatch: Callable | None = None,
    client_factory: Callable | None = None,
) -> ScrapingJob:
    """同期ジョブを開始する（パイプラインの完了は待たない）

    Raises:
        SyncAlreadyRunningError: 同テナントで実行中のジョブがある
        CatalogNotConfiguredError: カタログAPIトークンがない
    """
    if kind not in JOB_KINDS:
        raise ValueError(f"Unknown job kind: {kind}")
    token = credential or tenant.catalog_token
    if not token:
        raise CatalogNotConfiguredError(f"No catalog credential for {tenant.domain}")

    running = find_running_job(db, tenant.id)
    if running:
        raise SyncAlreadyRunningError(running.id)

    job = ScrapingJob(
        tenant_id=tenant.id,
        kind=kind,
        state=STATE_RUNNING,
        progress=0,
        started_at=utcnow(),
    )
    db.add(job)
    try:
        db.commit()
    except IntegrityError:
        # 部分ユニークインデックスで同時開始を検出
        db.rollback()
        running = find_running_job(db, tenant.id)
        raise SyncAlreadyRunningError(running.id if running else 0)
    db.refresh(job)
    logger.info(
        "Sync job %d started for %s (kind=%s)", job.id, tenant.domain, kind
    )

    try:
        (dispatch or _submit)(
            run_pipeline, job.id, tenant.id, tenant.domain, token, client_factory
        )
    except Exception as e:
        fail(db, job.id, f"Could not dispatch sync job: {e}")
        raise
    return job


def update_progress(
    db: Session, job_id: int, percent: int, items_processed: int
) -> None:
    """進捗を更新する。値は減らさない。終了済みジョブは無視"""
    job = db.get(ScrapingJob, job_id)
    if job is None or job.is_terminal:
        return
    percent = max(0, min(100, int(percent)))
    job.progress = max(job.progress or 0, percent)
    job.items_processed = max(job.items_processed or 0, items_processed)
    db.commit()


def _finish(db: Session, job_id: int, state: str, **values) -> bool:
    job = db.get(ScrapingJob, job_id)
    if job is None:
        logger.warning("Sync job %d not found", job_id)
        return False
    if job.is_terminal:
        logger.warning(
            "Sync job %d is already %s, ignoring %s", job_id, job.state, state
        )
        return False
    job.state = state
    job.completed_at = utcnow()
    for key, value in values.items():
        setattr(job, key, value)
    db.commit()
    return True


def complete(db: Session, job_id: int, items_found: int, items_processed: int) -> bool:
    return _finish(
        db,
        job_id,
        STATE_COMPLETED,
        progress=100,
        items_found=items_found,
        items_processed=items_processed,
    )


def fail(db: Session, job_id: int, error_text: str) -> bool:
    return _finish(
        db, job_id, STATE_FAILED, error_message=(error_text or "")[:MAX_ERROR_LENGTH]
    )


def _category_progress(index: int) -> int:
    # 開始時10%、カテゴリごとに均等に進めて最大90%
    return 10 + int(80 * (index + 1) / len(CATEGORY_ORDER))


def _refresh_tenant_info(db: Session, tenant_id: int, client) -> None:
    """ストア名・通貨を最新にする（権限がなければそのまま）"""
    try:
        info = client.fetch_shop_info()
    except CatalogPermissionError:
        logger.info("Shop info not accessible for tenant %d, skipping", tenant_id)
        return
    tenant = db.get(Tenant, tenant_id)
    if tenant is None:
        return
    if info.get("name"):
        tenant.name = info["name"]
    if info.get("currency"):
        tenant.currency = info["currency"]
    db.commit()


def _sync_categories(
    db: Session, job_id: int, tenant_id: int, client
) -> tuple[int, int]:
    found = 0
    processed = 0
    for index, category in enumerate(CATEGORY_ORDER):
        try:
            raw_records = list(client.fetch_category(category))
        except CatalogPermissionError as e:
            logger.warning(
                "Sync job %d: skipping %s (permission denied: %s)", job_id, category, e
            )
            update_progress(db, job_id, _category_progress(index), processed)
            continue

        records = [normalize(tenant_id, category, raw) for raw in raw_records]
        found += len(records)
        processed += replace_category(db, tenant_id, category, records)
        update_progress(db, job_id, _category_progress(index), processed)
        logger.info(
            "Sync job %d: %s done (%d records)", job_id, category, len(records)
        )
    return found, processed


def run_pipeline(
    job_id: int,
    tenant_id: int,
    domain: str,
    token: str,
    client_factory: Callable | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> None:
    """ワーカースレッドで実行される同期パイプライン本体"""
    client_factory = client_factory or CatalogClient
    db = (session_factory or SessionLocal)()
    try:
        update_progress(db, job_id, 10, 0)
        with client_factory(domain, token) as client:
            _refresh_tenant_info(db, tenant_id, client)
            found, processed = _sync_categories(db, job_id, tenant_id, client)
        complete(db, job_id, found, processed)
        logger.info(
            "Sync job %d completed for %s: %d found, %d processed",
            job_id, domain, found, processed,
        )
    except Exception as e:
        logger.exception("Sync job %d failed for %s", job_id, domain)
        db.rollback()
        try:
            fail(db, job_id, str(e) or type(e).__name__)
        except Exception:
            logger.exception("Failed to record failure for sync job %d", job_id)
    finally:
        db.close()


def get_sync_status(db: Session, tenant: Tenant, history: int = 5) -> dict:
    """最新ジョブ・直近のジョブ履歴・カテゴリ別件数を返す"""
    jobs = (
        db.query(ScrapingJob)
        .filter(ScrapingJob.tenant_id == tenant.id)
        .order_by(ScrapingJob.created_at.desc(), ScrapingJob.id.desc())
        .limit(history)
        .all()
    )
    return {
        "latest_job": jobs[0] if jobs else None,
        "recent_jobs": jobs,
        "content_counts": count_by_category(db, tenant.id),
    }


def _fail_jobs(db: Session, jobs: list[ScrapingJob], reason: str) -> int:
    failed = 0
    for job in jobs:
        if fail(db, job.id, reason):
            failed += 1
    return failed


def recover_orphaned_jobs(db: Session) -> int:
    """起動時に running のジョブをすべて failed にする

    ジョブはこのプロセスのワーカースレッドでしか実行されないため、
    起動時点で running のものは前回プロセスの取り残し。
    """
    orphans = db.query(ScrapingJob).filter(ScrapingJob.state == STATE_RUNNING).all()
    recovered = _fail_jobs(db, orphans, "Interrupted: process restarted while job was running")
    if recovered:
        logger.warning("Marked %d orphaned sync jobs as failed", recovered)
    return recovered


def sweep_stale_jobs(db: Session, older_than: timedelta | None = None) -> int:
    """一定時間以上 running のままのジョブを failed にする（ワーカーの固まり対策）"""
    if older_than is None:
        older_than = timedelta(minutes=settings.stuck_job_minutes)
    cutoff = utcnow() - older_than
    stale = (
        db.query(ScrapingJob)
        .filter(ScrapingJob.state == STATE_RUNNING, ScrapingJob.started_at < cutoff)
        .all()
    )
    swept = _fail_jobs(db, stale, f"Timed out: still running after {older_than}")
    if swept:
        logger.warning("Marked %d stuck sync jobs as failed", swept)
    return swept
