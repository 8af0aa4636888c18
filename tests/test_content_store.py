import pytest
from sqlalchemy.exc import IntegrityError

from storebot.models.content import ContentRecord
from storebot.services.content_store import count_by_category, list_titles, replace_category
from storebot.services.normalizer import normalize
from storebot.services.tenants import get_or_create_tenant


def _items(tenant_id, *titles, category="item"):
    return [
        normalize(tenant_id, category, {
            "id": f"{category}-{i}",
            "title": title,
            "handle": title.lower().replace(" ", "-"),
            "description": f"About {title}",
        })
        for i, title in enumerate(titles)
    ]


def _snapshot(db, tenant_id, category="item"):
    rows = (
        db.query(ContentRecord)
        .filter(ContentRecord.tenant_id == tenant_id, ContentRecord.category == category)
        .all()
    )
    return {(r.external_id, r.title, r.body, r.url, r.keywords, r.search_blob) for r in rows}


def test_replace_is_idempotent(db, tenant):
    records = _items(tenant.id, "Diet Chocolate Bar", "Vanilla Bar")
    assert replace_category(db, tenant.id, "item", records) == 2
    first = _snapshot(db, tenant.id)

    assert replace_category(db, tenant.id, "item", _items(tenant.id, "Diet Chocolate Bar", "Vanilla Bar")) == 2
    assert _snapshot(db, tenant.id) == first


def test_replace_removes_records_deleted_upstream(db, tenant):
    replace_category(db, tenant.id, "item", _items(tenant.id, "A", "B", "C"))
    replace_category(db, tenant.id, "item", _items(tenant.id, "A"))
    assert {t for _, t, *_ in _snapshot(db, tenant.id)} == {"A"}


def test_duplicate_external_ids_keep_first(db, tenant):
    records = _items(tenant.id, "First") + _items(tenant.id, "Second")
    assert records[0]["external_id"] == records[1]["external_id"]

    assert replace_category(db, tenant.id, "item", records) == 1
    assert {t for _, t, *_ in _snapshot(db, tenant.id)} == {"First"}


def test_small_batches_insert_everything(db, tenant):
    records = _items(tenant.id, *[f"Item {i}" for i in range(7)])
    assert replace_category(db, tenant.id, "item", records, batch_size=3) == 7


def test_other_categories_and_tenants_are_untouched(db, tenant):
    other = get_or_create_tenant(db, "other-store.myshopify.com")
    replace_category(db, tenant.id, "page", _items(tenant.id, "About us", category="page"))
    replace_category(db, other.id, "item", _items(other.id, "Their item"))

    replace_category(db, tenant.id, "item", _items(tenant.id, "Our item"))

    assert count_by_category(db, tenant.id) == {"item": 1, "page": 1}
    assert count_by_category(db, other.id) == {"item": 1}


def test_failed_replace_keeps_previous_content(db, tenant):
    replace_category(db, tenant.id, "item", _items(tenant.id, "Keep me"))
    broken = _items(tenant.id, "Broken")
    broken[0]["title"] = None  # NOT NULL

    with pytest.raises(IntegrityError):
        replace_category(db, tenant.id, "item", broken)

    assert {t for _, t, *_ in _snapshot(db, tenant.id)} == {"Keep me"}


def test_list_titles(db, tenant):
    replace_category(db, tenant.id, "collection", _items(
        tenant.id, "Summer", "Winter", category="collection"
    ))
    assert set(list_titles(db, tenant.id, "collection")) == {"Summer", "Winter"}
    assert list_titles(db, tenant.id, "collection", limit=1) != []
