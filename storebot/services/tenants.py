"""テナント（ストア）の取得・登録"""

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storebot.errors import TenantNotFoundError
from storebot.models.tenant import BotConfig, Tenant

logger = logging.getLogger(__name__)

_TENANT_FIELDS = ("name", "locale", "currency", "catalog_token", "is_active")


def find_tenant(db: Session, domain: str) -> Tenant | None:
    return db.query(Tenant).filter(Tenant.domain == domain).first()


def get_tenant(db: Session, domain: str) -> Tenant:
    tenant = find_tenant(db, domain)
    if not tenant:
        raise TenantNotFoundError(f"Tenant not found: {domain}")
    return tenant


def get_or_create_tenant(db: Session, domain: str, **attrs) -> Tenant:
    """初回アクセス時にテナントとデフォルトのボット設定を作成する

    attrs に値があれば既存テナントも更新する（None は無視）。
    """
    values = {k: v for k, v in attrs.items() if k in _TENANT_FIELDS and v is not None}

    tenant = find_tenant(db, domain)
    if tenant:
        if values:
            for key, value in values.items():
                setattr(tenant, key, value)
            db.commit()
            db.refresh(tenant)
        return tenant

    tenant = Tenant(domain=domain, **values)
    tenant.bot_config = BotConfig()
    db.add(tenant)
    try:
        db.commit()
    except IntegrityError:
        # 同時リクエストが先に作成した
        db.rollback()
        return get_tenant(db, domain)
    db.refresh(tenant)
    logger.info("Created tenant %s (id=%d)", domain, tenant.id)
    return tenant


def get_bot_config(db: Session, tenant: Tenant) -> BotConfig:
    """ボット設定がなければデフォルトで作成する"""
    if tenant.bot_config is None:
        tenant.bot_config = BotConfig()
        db.commit()
        db.refresh(tenant)
    return tenant.bot_config
