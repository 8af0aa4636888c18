import logging
import traceback

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from storebot.api import analytics, chat, health, search, sync, tenants
from storebot.config import settings
from storebot.database import Base, SessionLocal, engine
from storebot.errors import ModelCallError, TenantNotFoundError
from storebot.services.sync_jobs import recover_orphaned_jobs, shutdown_executor
from storebot.tasks.scheduled_sync import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Storebot",
    description="ストアのコンテンツ同期 + ストア専用チャットボット",
    version="0.1.0",
)

# CORS（各ストアのウィジェットから呼ばれる）
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, prefix="/api")
app.include_router(tenants.router, prefix="/api")
app.include_router(sync.router, prefix="/api")
app.include_router(chat.router, prefix="/api")
app.include_router(search.router, prefix="/api")
app.include_router(analytics.router, prefix="/api")


@app.exception_handler(TenantNotFoundError)
async def tenant_not_found_handler(request: Request, exc: TenantNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ModelCallError)
async def model_call_error_handler(request: Request, exc: ModelCallError):
    logger.error("Model call failed: %s", exc)
    return JSONResponse(status_code=502, content={"detail": "Upstream model error"})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    tb = traceback.format_exception(type(exc), exc, exc.__traceback__)
    logger.error("Unhandled exception:\n%s", "".join(tb))
    # 内部の詳細はクライアントに返さない
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


def _recover_stuck_jobs():
    """前回のプロセス終了で running のまま残ったジョブを failed にする"""
    db = SessionLocal()
    try:
        recover_orphaned_jobs(db)
    finally:
        db.close()


@app.on_event("startup")
async def startup():
    Base.metadata.create_all(bind=engine)
    _recover_stuck_jobs()
    if settings.scheduler_enabled:
        start_scheduler()


@app.on_event("shutdown")
async def shutdown():
    stop_scheduler()
    shutdown_executor()
