import os

# アプリのエンジンを作る前に設定する
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_SYNC_ON_CHAT"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from storebot.api.chat import get_llm_provider
from storebot.api.sync import get_sync_dispatch
from storebot.database import Base, get_db
from storebot.main import app
from storebot.services.tenants import get_or_create_tenant

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

DOMAIN = "demo-store.myshopify.com"


def inline_dispatch(fn, *args):
    """パイプラインをワーカースレッドではなくその場で実行する"""
    fn(*args, session_factory=TestingSessionLocal)


def noop_dispatch(fn, *args):
    """ジョブを running のまま残す"""


@pytest.fixture
def run_inline():
    return inline_dispatch


@pytest.fixture
def run_later():
    return noop_dispatch


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def tenant(db):
    return get_or_create_tenant(
        db, DOMAIN, name="Demo Store", currency="EUR", catalog_token="shpat_test"
    )


@pytest.fixture
def client():
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_sync_dispatch] = lambda: inline_dispatch
    app.dependency_overrides[get_llm_provider] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()
