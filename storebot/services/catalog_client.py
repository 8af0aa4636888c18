"""外部カタログAPI（GraphQL Admin API）からコンテンツを取得するクライアント

フロー:
1. カテゴリごとにカーソル付きページングで全件取得（hasNextPage=false で終了）
2. カーソルはメモリ上のみ。クラッシュ後の再開はしない
3. アクセス拒否は CatalogPermissionError（呼び出し側でカテゴリごとスキップ）
4. それ以外のエラーは CatalogAPIError（ジョブ失敗）
"""

import logging
from collections.abc import Iterator

import httpx

from storebot.config import settings
from storebot.errors import CatalogAPIError, CatalogPermissionError

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"

SHOP_QUERY = """
query getShop {
  shop { name currencyCode primaryDomain { host } }
}
"""

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after) {
    edges {
      node {
        id title handle description descriptionHtml tags vendor productType
        createdAt updatedAt status
        variants(first: 10) { edges { node { title availableForSale } } }
        collections(first: 5) { edges { node { title } } }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

BLOGS_QUERY = """
query getBlogs($first: Int!, $after: String) {
  blogs(first: $first, after: $after) {
    edges { node { id title handle } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

ARTICLES_QUERY = """
query getBlogArticles($blogId: ID!, $first: Int!, $after: String) {
  blog(id: $blogId) {
    articles(first: $first, after: $after) {
      edges {
        node {
          id title handle contentHtml excerpt tags createdAt publishedAt isPublished
        }
      }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

COLLECTIONS_QUERY = """
query getCollections($first: Int!, $after: String) {
  collections(first: $first, after: $after) {
    edges { node { id title handle description descriptionHtml updatedAt } }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PAGES_QUERY = """
query getPages($first: Int!, $after: String) {
  pages(first: $first, after: $after) {
    edges { node { id title handle body bodySummary createdAt publishedAt isPublished } }
    pageInfo { hasNextPage endCursor }
  }
}
"""


def _is_access_denied(errors: list[dict]) -> bool:
    for error in errors:
        message = str(error.get("message", "")).lower()
        code = str((error.get("extensions") or {}).get("code", "")).upper()
        if "access denied" in message or code == "ACCESS_DENIED":
            return True
    return False


def _dig(data: dict, path: tuple[str, ...]) -> dict | None:
    node = data
    for key in path:
        if not isinstance(node, dict):
            return None
        node = node.get(key)
    return node


def _edge_nodes(connection: dict | None) -> list[dict]:
    if not connection:
        return []
    return [e["node"] for e in connection.get("edges", []) if e.get("node")]


class CatalogClient:
    """テナント1件分のカタログAPIクライアント"""

    def __init__(
        self,
        domain: str,
        token: str,
        api_version: str | None = None,
        page_size: int | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.domain = domain
        self.page_size = page_size or settings.catalog_page_size
        version = api_version or settings.catalog_api_version
        self._path = f"/admin/api/{version}/graphql.json"
        self._client = httpx.Client(
            base_url=f"https://{domain}",
            headers={ACCESS_TOKEN_HEADER: token},
            timeout=timeout or settings.catalog_timeout_seconds,
            transport=transport,
        )

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self._client.close()

    def _graphql(self, query: str, variables: dict | None = None) -> dict:
        try:
            response = self._client.post(
                self._path, json={"query": query, "variables": variables or {}}
            )
        except httpx.HTTPError as e:
            raise CatalogAPIError(f"Catalog request failed: {e}") from e

        if response.status_code == 403:
            raise CatalogPermissionError(
                f"Access denied ({response.status_code} {response.reason_phrase})"
            )
        if response.status_code >= 400:
            raise CatalogAPIError(
                f"Catalog request failed: {response.status_code} {response.reason_phrase}"
            )

        payload = response.json()
        errors = payload.get("errors")
        if errors:
            if isinstance(errors, list) and _is_access_denied(errors):
                raise CatalogPermissionError(f"Access denied: {errors}")
            raise CatalogAPIError(f"Catalog GraphQL errors: {errors}")
        return payload.get("data") or {}

    def _paginate(
        self, query: str, path: tuple[str, ...], variables: dict | None = None
    ) -> Iterator[dict]:
        """カーソルを辿って connection の node を順に返す"""
        cursor = None
        while True:
            data = self._graphql(
                query, {**(variables or {}), "first": self.page_size, "after": cursor}
            )
            connection = _dig(data, path)
            if not connection:
                return
            yield from _edge_nodes(connection)

            page_info = connection.get("pageInfo") or {}
            if not page_info.get("hasNextPage"):
                return
            cursor = page_info.get("endCursor")

    def fetch_shop_info(self) -> dict:
        """ストア名・通貨を取得する"""
        shop = self._graphql(SHOP_QUERY).get("shop") or {}
        return {"name": shop.get("name"), "currency": shop.get("currencyCode")}

    def fetch_category(self, category: str) -> Iterator[dict]:
        """カテゴリの生レコードを遅延的に返す"""
        fetchers = {
            "item": self._fetch_items,
            "article": self._fetch_articles,
            "collection": self._fetch_collections,
            "page": self._fetch_pages,
        }
        if category not in fetchers:
            raise ValueError(f"Unknown category: {category}")
        return fetchers[category]()

    def _fetch_items(self) -> Iterator[dict]:
        skipped = 0
        for node in self._paginate(PRODUCTS_QUERY, ("products",)):
            variants = _edge_nodes(node.pop("variants", None))
            collections = _edge_nodes(node.pop("collections", None))
            # 在庫のあるバリエーションが1つもない商品は除外
            if variants and not any(v.get("availableForSale") for v in variants):
                skipped += 1
                continue
            node["facets"] = [v.get("title") for v in variants] + [
                c.get("title") for c in collections
            ]
            yield node
        if skipped:
            logger.info("Skipped %d unavailable items for %s", skipped, self.domain)

    def _fetch_articles(self) -> Iterator[dict]:
        for blog in self._paginate(BLOGS_QUERY, ("blogs",)):
            for node in self._paginate(
                ARTICLES_QUERY, ("blog", "articles"), {"blogId": blog["id"]}
            ):
                node["blogHandle"] = blog.get("handle")
                node["facets"] = [blog.get("title")]
                yield node

    def _fetch_collections(self) -> Iterator[dict]:
        yield from self._paginate(COLLECTIONS_QUERY, ("collections",))

    def _fetch_pages(self) -> Iterator[dict]:
        for node in self._paginate(PAGES_QUERY, ("pages",)):
            if node.get("bodySummary"):
                node["excerpt"] = node.pop("bodySummary")
            yield node
