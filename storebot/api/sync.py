import hmac
import logging
from collections.abc import Callable

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.database import get_db
from storebot.errors import CatalogNotConfiguredError, SyncAlreadyRunningError
from storebot.schemas.sync import (
    ScheduledSyncResult,
    ScrapingJobRead,
    SyncStartRequest,
    SyncStatusRead,
)
from storebot.services import sync_jobs
from storebot.services.tenants import get_tenant
from storebot.tasks.scheduled_sync import run_scheduled_sync

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


def get_sync_dispatch() -> Callable | None:
    """ジョブの投入先。None ならワーカースレッドプール"""
    return None


def _verify_cron_secret(authorization: str | None) -> None:
    expected = f"Bearer {settings.cron_secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/run-scheduled", response_model=ScheduledSyncResult)
def run_scheduled(
    authorization: str | None = Header(None),
    db: Session = Depends(get_db),
    dispatch: Callable | None = Depends(get_sync_dispatch),
):
    """外部cronからの定期同期トリガー（Bearer シークレット必須）"""
    _verify_cron_secret(authorization)
    return run_scheduled_sync(db, dispatch=dispatch)


@router.post("/{domain}", response_model=ScrapingJobRead, status_code=202)
def start_sync(
    domain: str,
    data: SyncStartRequest | None = None,
    db: Session = Depends(get_db),
    dispatch: Callable | None = Depends(get_sync_dispatch),
):
    """同期ジョブを開始してすぐに返す。進捗は status で確認する"""
    data = data or SyncStartRequest()
    tenant = get_tenant(db, domain)
    try:
        job = sync_jobs.start_job(
            db, tenant, data.kind, credential=data.credential, dispatch=dispatch
        )
    except SyncAlreadyRunningError as e:
        raise HTTPException(
            status_code=409, detail=f"Sync job {e.job_id} is already running"
        )
    except CatalogNotConfiguredError as e:
        raise HTTPException(status_code=400, detail=str(e))
    db.refresh(job)
    return job


@router.get("/{domain}/status", response_model=SyncStatusRead)
def sync_status(domain: str, db: Session = Depends(get_db)):
    tenant = get_tenant(db, domain)
    status = sync_jobs.get_sync_status(db, tenant)
    return SyncStatusRead.model_validate(status, from_attributes=True)
