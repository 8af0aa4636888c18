from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from storebot.config import settings

connect_args = {}
if settings.database_url.startswith("sqlite"):
    # Ensure data directory exists
    db_path = settings.database_url.partition(":///")[2]
    if db_path and db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    # 同期ジョブはワーカースレッドから書き込むため
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.database_url, connect_args=connect_args)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class Base(DeclarativeBase):
    pass


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def utcnow() -> datetime:
    """UTCの現在時刻（naive）。SQLiteのDateTime列と比較できる形で返す"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
