from datetime import datetime
from typing import Literal

from pydantic import BaseModel


class SyncStartRequest(BaseModel):
    kind: Literal["manual", "scheduled", "background_trigger"] = "manual"
    credential: str | None = None  # 省略時はテナントに登録済みのトークン


class ScrapingJobRead(BaseModel):
    id: int
    tenant_id: int
    kind: str
    state: str
    progress: int
    items_found: int
    items_processed: int
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class SyncStatusRead(BaseModel):
    latest_job: ScrapingJobRead | None = None
    recent_jobs: list[ScrapingJobRead] = []
    content_counts: dict[str, int] = {}


class ScheduledSyncResult(BaseModel):
    checked: int
    started: int
    errors: int
