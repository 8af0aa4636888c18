"""テナント単位のコンテンツ保存サービス

カテゴリ単位で「全削除 → バッチ挿入」を1トランザクションで行い、
上流で削除されたコンテンツも同期のたびに消えるようにする。
"""

import logging

from sqlalchemy import delete, func, insert, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storebot.config import settings
from storebot.models.content import ContentRecord
from storebot.services import retrieval

logger = logging.getLogger(__name__)

_CONFLICT_COLUMNS = ["tenant_id", "category", "external_id"]


def _dedupe(records: list[dict]) -> list[dict]:
    """同じ external_id の重複を除く（先勝ち）"""
    seen = set()
    unique = []
    for record in records:
        key = record["external_id"]
        if not key or key in seen:
            continue
        seen.add(key)
        unique.append(record)
    return unique


def _insert_ignoring_conflicts(db: Session, rows: list[dict]) -> int:
    """一意制約に違反する行はスキップして挿入する。挿入件数を返す"""
    dialect = db.get_bind().dialect.name
    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert as dialect_insert
        else:
            from sqlalchemy.dialects.postgresql import insert as dialect_insert
        stmt = (
            dialect_insert(ContentRecord)
            .values(rows)
            .on_conflict_do_nothing(index_elements=_CONFLICT_COLUMNS)
        )
        return db.execute(stmt).rowcount

    # その他のDB: 1行ずつ SAVEPOINT で挿入
    inserted = 0
    for row in rows:
        try:
            with db.begin_nested():
                db.execute(insert(ContentRecord).values(**row))
            inserted += 1
        except IntegrityError:
            logger.debug("Skipped duplicate content %s", row["external_id"])
    return inserted


def replace_category(
    db: Session,
    tenant_id: int,
    category: str,
    records: list[dict],
    batch_size: int | None = None,
) -> int:
    """(tenant, category) のコンテンツを丸ごと置き換える

    削除と挿入は同じトランザクションで行い、最後に1回だけ commit する。
    """
    batch_size = batch_size or settings.sync_batch_size
    rows = _dedupe(records)

    try:
        db.execute(
            delete(ContentRecord).where(
                ContentRecord.tenant_id == tenant_id,
                ContentRecord.category == category,
            )
        )
        inserted = 0
        for i in range(0, len(rows), batch_size):
            inserted += _insert_ignoring_conflicts(db, rows[i:i + batch_size])
        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Replaced %s content for tenant %d: %d rows (%d received)",
        category, tenant_id, inserted, len(records),
    )
    return inserted


def count_by_category(db: Session, tenant_id: int) -> dict[str, int]:
    """カテゴリ別の件数を返す"""
    rows = db.execute(
        select(ContentRecord.category, func.count(ContentRecord.id))
        .where(ContentRecord.tenant_id == tenant_id)
        .group_by(ContentRecord.category)
    ).all()
    return {category: count for category, count in rows}


def list_titles(
    db: Session, tenant_id: int, category: str, limit: int = 10
) -> list[str]:
    """プロンプト用にカテゴリ内のタイトルを取得する（新しい順）"""
    return list(
        db.scalars(
            select(ContentRecord.title)
            .where(
                ContentRecord.tenant_id == tenant_id,
                ContentRecord.category == category,
                ContentRecord.is_active.is_(True),
            )
            .order_by(ContentRecord.last_synced.desc(), ContentRecord.id.desc())
            .limit(limit)
        )
    )


def search(
    db: Session,
    tenant_id: int,
    query: str,
    categories: list[str] | None = None,
    limit: int = 5,
) -> tuple[list[ContentRecord], int]:
    """部分一致検索。(結果, 総件数) を返す"""
    items = retrieval.filter_search(db, tenant_id, query, categories, limit)
    total = retrieval.count_matches(db, tenant_id, query, categories)
    return items, total
