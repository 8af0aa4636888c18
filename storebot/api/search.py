from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from storebot.database import get_db
from storebot.models.content import CATEGORIES
from storebot.schemas.search import SearchResponse
from storebot.services import content_store, retrieval
from storebot.services.tenants import get_tenant

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/{domain}", response_model=SearchResponse)
def search_content(
    domain: str,
    q: str = Query(""),
    category: list[str] | None = Query(None),
    limit: int = Query(5, ge=1, le=retrieval.MAX_LIMIT),
    mode: Literal["filter", "scored"] = Query(retrieval.MODE_SCORED),
    db: Session = Depends(get_db),
):
    tenant = get_tenant(db, domain)
    invalid = [c for c in category or [] if c not in CATEGORIES]
    if invalid:
        raise HTTPException(status_code=422, detail=f"Unknown category: {', '.join(invalid)}")

    if mode == retrieval.MODE_FILTER:
        records, total = content_store.search(db, tenant.id, q, category, limit)
        payload = retrieval.serialize_hits(
            [retrieval.SearchHit(record=r) for r in records], q, category
        )
        payload["total"] = total
        return payload

    hits = retrieval.search(db, tenant.id, q, category, limit, mode=mode)
    return retrieval.serialize_hits(hits, q, category)
