"""外部カタログの生レコードを ContentRecord の行データに正規化する

検索用テキスト（search_blob）とキーワード列を作る純粋関数のみ。DBには触らない。
"""

import html
import re
from datetime import datetime, timezone

from storebot.database import utcnow

EXCERPT_LENGTH = 200
MAX_KEYWORDS = 20

STOPWORDS = frozenset({
    "the", "and", "for", "are", "but", "not", "you", "all", "can", "had",
    "her", "was", "one", "our", "out", "day", "get", "has", "him", "his",
    "how", "its", "may", "new", "now", "old", "see", "two", "way", "who",
    "boy", "did", "man", "men", "put", "say", "she", "too", "use",
    "this", "that", "with", "from", "your", "have", "will", "they", "them",
    "what", "when", "were", "been", "into", "than", "then", "each", "also",
    "more", "most", "some", "such", "only", "very", "just", "over",
})

_TAG_RE = re.compile(r"<[^>]*>")
_WS_RE = re.compile(r"\s+")
_PUNCT_RE = re.compile(r"[^\w\s]")

# カテゴリごとのURLパス
_URL_PREFIX = {
    "item": "/products/",
    "collection": "/collections/",
    "page": "/pages/",
}


def strip_html(text: str | None) -> str:
    """HTMLタグを除去し、空白を1つにまとめる"""
    if not text:
        return ""
    plain = html.unescape(_TAG_RE.sub(" ", text))
    return _WS_RE.sub(" ", plain).strip()


def extract_keywords(title: str | None, body: str | None) -> str:
    """タイトル+本文から重要語を抽出してカンマ区切りで返す"""
    combined = f"{title or ''} {body or ''}".lower()
    words = _PUNCT_RE.sub(" ", combined).split()

    seen: dict[str, None] = {}
    for word in words:
        if len(word) <= 3 or word in STOPWORDS:
            continue
        seen.setdefault(word, None)
        if len(seen) >= MAX_KEYWORDS:
            break
    return ", ".join(seen)


def make_excerpt(body: str, length: int = EXCERPT_LENGTH) -> str:
    if len(body) <= length:
        return body
    return body[:length] + "..."


def build_search_blob(*parts: str | None) -> str:
    return " ".join(p for p in parts if p).lower()


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _is_active(category: str, raw: dict) -> bool:
    status = (raw.get("status") or "").lower()
    if category == "item":
        return status in ("", "active")
    if category in ("article", "page"):
        if "isPublished" in raw:
            return bool(raw["isPublished"])
        return status in ("", "published")
    return True


def _url_for(category: str, raw: dict) -> str | None:
    handle = raw.get("handle")
    if not handle:
        return raw.get("url")
    if category == "article":
        blog_handle = raw.get("blogHandle") or "news"
        return f"/blogs/{blog_handle}/{handle}"
    return _URL_PREFIX.get(category, "/") + handle


def normalize(tenant_id: int, category: str, raw: dict) -> dict:
    """生レコード1件を ContentRecord の列値に変換する

    任意項目（vendor, description, tags 等）が欠けていても例外にしない。
    """
    title = (raw.get("title") or "").strip()
    body = strip_html(
        raw.get("descriptionHtml") or raw.get("contentHtml")
        or raw.get("body") or raw.get("description")
    )
    tags = [t.strip() for t in (raw.get("tags") or []) if t and t.strip()]
    facets = [f for f in (raw.get("facets") or []) if f]

    search_blob = build_search_blob(
        title,
        body,
        raw.get("vendor"),
        raw.get("productType"),
        " ".join(facets),
        " ".join(tags),
    )
    keywords = extract_keywords(title, body)

    raw_excerpt = strip_html(raw.get("excerpt"))
    excerpt = make_excerpt(raw_excerpt or body)

    return {
        "tenant_id": tenant_id,
        "category": category,
        "external_id": str(raw.get("id") or ""),
        "title": title,
        "body": body,
        "excerpt": excerpt,
        "url": _url_for(category, raw),
        "tags": ", ".join(tags),
        "search_blob": search_blob,
        "keywords": keywords,
        "published_at": _parse_time(
            raw.get("publishedAt") or raw.get("createdAt") or raw.get("updatedAt")
        ),
        "last_synced": utcnow(),
        "is_active": _is_active(category, raw),
    }
