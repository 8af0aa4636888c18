from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from storebot.database import get_db
from storebot.schemas.tenant import TenantCreate, TenantRead
from storebot.services.tenants import get_bot_config, get_or_create_tenant, get_tenant

router = APIRouter(prefix="/tenants", tags=["tenants"])


@router.post("/", response_model=TenantRead, status_code=201)
def register_tenant(data: TenantCreate, db: Session = Depends(get_db)):
    """テナントを登録する（既存なら指定された項目だけ更新）"""
    values = data.model_dump(exclude={"domain"})
    tenant = get_or_create_tenant(db, data.domain.strip().lower(), **values)
    get_bot_config(db, tenant)
    return tenant


@router.get("/{domain}", response_model=TenantRead)
def read_tenant(domain: str, db: Session = Depends(get_db)):
    return get_tenant(db, domain)
