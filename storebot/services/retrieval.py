"""同期済みコンテンツの検索サービス

2つのモード:
- filter: 部分一致（大文字小文字無視）で新しい順に返す。低レイテンシ用
- scored: 表記ゆれ補正 + フィールド重み付けでスコアリングして返す

どちらもテナントの is_active=True のレコードのみを対象にする。
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from storebot.models.content import ContentRecord

logger = logging.getLogger(__name__)

MODE_FILTER = "filter"
MODE_SCORED = "scored"
MAX_LIMIT = 20

# よくある誤字・別表記の補正テーブル（単語単位）
CORRECTIONS = {
    "chocolat": "chocolate",
    "choclate": "chocolate",
    "chocolatte": "chocolate",
    "chokolade": "chocolate",
    "protien": "protein",
    "proteine": "protein",
    "vegen": "vegan",
    "veggan": "vegan",
    "organik": "organic",
    "glutenfree": "gluten free",
    "sugarfree": "sugar free",
    "dairyfree": "dairy free",
    "lowcarb": "low carb",
    "ketogenic": "keto",
    "cofee": "coffee",
    "coffe": "coffee",
    "expresso": "espresso",
    "biscuit": "cookie",
    "biscuits": "cookies",
    "sweets": "candy",
}

# 組み合わせで意味を持つ概念（修飾語 × 商品カテゴリ）
QUALIFIER_CONCEPTS = (
    "diet", "vegan", "organic", "sugar free", "gluten free", "dairy free",
    "keto", "low carb", "protein", "light", "zero",
)
CATEGORY_CONCEPTS = (
    "chocolate", "bar", "cookie", "snack", "candy", "coffee", "espresso", "tea",
    "cereal", "granola", "bread", "pasta", "sauce", "drink", "powder", "shake",
)

FULL_QUERY_IN_TITLE = 100
ALL_TOKENS_IN_TITLE = 80
ALL_TOKENS_ANYWHERE = 60
CONCEPT_BONUS_TITLE = 50
CONCEPT_BONUS_SPLIT = 30
FIELD_WEIGHTS = (
    ("title", 10),
    ("keywords", 6),
    ("search_blob", 4),
    ("body", 2),
)

_WORD_RE = re.compile(r"[^\w]+")


def correct_query(query: str) -> str:
    """補正テーブルを単語単位で適用する"""
    words = _WORD_RE.sub(" ", query.lower()).split()
    return " ".join(CORRECTIONS.get(w, w) for w in words)


def tokenize(query: str) -> list[str]:
    """3文字以上の単語に分割する（重複除去）"""
    return list(dict.fromkeys(w for w in query.split() if len(w) > 2))


def _has_concept(text: str, concept: str) -> bool:
    return re.search(rf"\b{re.escape(concept)}s?\b", text) is not None


class BaseScorer(ABC):
    """スコアリング戦略の基底クラス。差し替え可能"""

    @abstractmethod
    def score(self, record: ContentRecord, query: str) -> float:
        """0 以下は「一致なし」として除外される"""


class HeuristicScorer(BaseScorer):
    """手調整のルールテーブルによるスコアリング"""

    def score(self, record: ContentRecord, query: str) -> float:
        corrected = correct_query(query)
        tokens = tokenize(corrected)
        if not tokens:
            return 0.0

        fields = {
            "title": (record.title or "").lower(),
            "keywords": (record.keywords or "").lower(),
            "search_blob": (record.search_blob or "").lower(),
            "body": (record.body or "").lower(),
        }
        title = fields["title"]
        combined = " ".join(fields.values())

        score = 0.0
        if corrected and corrected in title:
            score += FULL_QUERY_IN_TITLE
        if all(t in title for t in tokens):
            score += ALL_TOKENS_IN_TITLE
        if all(t in combined for t in tokens):
            score += ALL_TOKENS_ANYWHERE

        for token in tokens:
            for field, weight in FIELD_WEIGHTS:
                if token in fields[field]:
                    score += weight

        score += self._concept_bonus(corrected, title, fields["body"])
        return score

    @staticmethod
    def _concept_bonus(corrected: str, title: str, body: str) -> float:
        qualifiers = [c for c in QUALIFIER_CONCEPTS if _has_concept(corrected, c)]
        kinds = [c for c in CATEGORY_CONCEPTS if _has_concept(corrected, c)]
        if not qualifiers or not kinds:
            return 0.0

        best = 0.0
        for qualifier in qualifiers:
            for kind in kinds:
                q_title = _has_concept(title, qualifier)
                k_title = _has_concept(title, kind)
                if q_title and k_title:
                    return CONCEPT_BONUS_TITLE
                if (q_title and _has_concept(body, kind)) or (
                    k_title and _has_concept(body, qualifier)
                ):
                    best = CONCEPT_BONUS_SPLIT
        return best


@dataclass
class SearchHit:
    record: ContentRecord
    score: float | None = None  # filter モードでは None


def _clamp_limit(limit: int | None) -> int:
    if not limit or limit < 1:
        return 5
    return min(int(limit), MAX_LIMIT)


def _base_query(tenant_id: int, categories: list[str] | None):
    stmt = select(ContentRecord).where(
        ContentRecord.tenant_id == tenant_id,
        ContentRecord.is_active.is_(True),
    )
    if categories:
        stmt = stmt.where(ContentRecord.category.in_(categories))
    return stmt


def _like_pattern(text: str) -> str:
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _apply_text_filter(stmt, query: str):
    text = (query or "").strip()
    if not text:
        return stmt
    pattern = _like_pattern(text)
    return stmt.where(
        or_(
            ContentRecord.title.ilike(pattern, escape="\\"),
            ContentRecord.search_blob.ilike(pattern.lower(), escape="\\"),
            ContentRecord.keywords.ilike(pattern, escape="\\"),
            ContentRecord.tags.ilike(pattern, escape="\\"),
        )
    )


def filter_search(
    db: Session,
    tenant_id: int,
    query: str,
    categories: list[str] | None = None,
    limit: int | None = 5,
) -> list[ContentRecord]:
    """部分一致検索（新しく同期された順）"""
    stmt = _apply_text_filter(_base_query(tenant_id, categories), query)
    stmt = stmt.order_by(
        ContentRecord.last_synced.desc(), ContentRecord.id.desc()
    ).limit(_clamp_limit(limit))
    return list(db.scalars(stmt))


def count_matches(
    db: Session, tenant_id: int, query: str, categories: list[str] | None = None
) -> int:
    stmt = _apply_text_filter(_base_query(tenant_id, categories), query)
    return db.scalar(select(func.count()).select_from(stmt.subquery())) or 0


def scored_search(
    db: Session,
    tenant_id: int,
    query: str,
    categories: list[str] | None = None,
    limit: int | None = 5,
    scorer: BaseScorer | None = None,
) -> list[SearchHit]:
    """スコア順の検索。スコア0のレコードは除外、同点は新しい順"""
    scorer = scorer or HeuristicScorer()
    candidates = db.scalars(_base_query(tenant_id, categories)).all()

    hits = []
    for record in candidates:
        value = scorer.score(record, query)
        if value > 0:
            hits.append(SearchHit(record=record, score=value))

    hits.sort(
        key=lambda h: (h.score, h.record.last_synced, h.record.id), reverse=True
    )
    logger.debug(
        "Scored search tenant=%d query=%r: %d/%d matched",
        tenant_id, query, len(hits), len(candidates),
    )
    return hits[:_clamp_limit(limit)]


def search(
    db: Session,
    tenant_id: int,
    query: str,
    categories: list[str] | None = None,
    limit: int | None = 5,
    mode: str = MODE_SCORED,
    scorer: BaseScorer | None = None,
) -> list[SearchHit]:
    """検索の入口。空クエリはモードに関わらず新しい順で返す"""
    if mode not in (MODE_FILTER, MODE_SCORED):
        raise ValueError(f"Unknown search mode: {mode}")

    if mode == MODE_FILTER or not (query or "").strip():
        records = filter_search(db, tenant_id, query, categories, limit)
        return [SearchHit(record=r) for r in records]
    return scored_search(db, tenant_id, query, categories, limit, scorer)


def serialize_hits(
    hits: list[SearchHit], query: str, categories: list[str] | None = None
) -> dict:
    """ツール結果・APIレスポンス用の辞書に変換する"""
    return {
        "query": query,
        "total": len(hits),
        "content_types": categories or None,
        "items": [
            {
                "id": h.record.external_id,
                "category": h.record.category,
                "title": h.record.title,
                "excerpt": h.record.excerpt,
                "url": h.record.url,
                "score": h.score,
            }
            for h in hits
        ],
    }
