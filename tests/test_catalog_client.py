import json

import httpx
import pytest

from storebot.errors import CatalogAPIError, CatalogPermissionError
from storebot.services.catalog_client import ACCESS_TOKEN_HEADER, CatalogClient


def _page(key, nodes, has_next=False, cursor=None):
    return {
        key: {
            "edges": [{"node": n} for n in nodes],
            "pageInfo": {"hasNextPage": has_next, "endCursor": cursor},
        }
    }


def _client(handler, **kwargs):
    return CatalogClient(
        "demo-store.myshopify.com",
        "shpat_test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _product(pid, available=True):
    return {
        "id": pid,
        "title": f"Product {pid}",
        "variants": {"edges": [{"node": {"title": "Default", "availableForSale": available}}]},
        "collections": {"edges": [{"node": {"title": "Snacks"}}]},
    }


def test_items_follow_cursor_until_last_page():
    requests = []

    def handler(request: httpx.Request):
        body = json.loads(request.content)
        requests.append(body["variables"])
        assert request.headers[ACCESS_TOKEN_HEADER] == "shpat_test"
        assert request.url.path == "/admin/api/2024-07/graphql.json"
        if body["variables"]["after"] is None:
            return httpx.Response(200, json={"data": _page("products", [_product("1")], True, "c1")})
        return httpx.Response(200, json={"data": _page("products", [_product("2")])})

    with _client(handler, api_version="2024-07", page_size=1) as client:
        items = list(client.fetch_category("item"))

    assert [i["id"] for i in items] == ["1", "2"]
    assert [r["after"] for r in requests] == [None, "c1"]
    assert all(r["first"] == 1 for r in requests)
    assert items[0]["facets"] == ["Default", "Snacks"]


def test_items_without_available_variant_are_skipped():
    def handler(request):
        nodes = [_product("1", available=False), _product("2")]
        return httpx.Response(200, json={"data": _page("products", nodes)})

    with _client(handler) as client:
        items = list(client.fetch_category("item"))
    assert [i["id"] for i in items] == ["2"]


def test_articles_are_fetched_per_blog():
    def handler(request):
        body = json.loads(request.content)
        if "getBlogs" in body["query"]:
            return httpx.Response(200, json={"data": _page("blogs", [
                {"id": "b1", "title": "Journal", "handle": "journal"},
            ])})
        assert body["variables"]["blogId"] == "b1"
        articles = _page("articles", [{"id": "a1", "title": "Hello", "handle": "hello"}])
        return httpx.Response(200, json={"data": {"blog": articles}})

    with _client(handler) as client:
        articles = list(client.fetch_category("article"))

    assert len(articles) == 1
    assert articles[0]["blogHandle"] == "journal"
    assert articles[0]["facets"] == ["Journal"]


def test_http_403_raises_permission_error():
    with _client(lambda request: httpx.Response(403)) as client:
        with pytest.raises(CatalogPermissionError):
            list(client.fetch_category("page"))


def test_graphql_access_denied_raises_permission_error():
    def handler(request):
        return httpx.Response(200, json={
            "errors": [{"message": "Access denied for blogs field.",
                        "extensions": {"code": "ACCESS_DENIED"}}],
        })

    with _client(handler) as client:
        with pytest.raises(CatalogPermissionError):
            list(client.fetch_category("article"))


def test_server_error_raises_api_error():
    with _client(lambda request: httpx.Response(500)) as client:
        with pytest.raises(CatalogAPIError) as exc_info:
            list(client.fetch_category("collection"))
    assert not isinstance(exc_info.value, CatalogPermissionError)


def test_transport_error_raises_api_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with _client(handler) as client:
        with pytest.raises(CatalogAPIError):
            client.fetch_shop_info()


def test_fetch_shop_info():
    def handler(request):
        return httpx.Response(200, json={"data": {"shop": {"name": "Demo", "currencyCode": "EUR"}}})

    with _client(handler) as client:
        assert client.fetch_shop_info() == {"name": "Demo", "currency": "EUR"}


def test_unknown_category_is_rejected():
    with _client(lambda request: httpx.Response(200, json={"data": {}})) as client:
        with pytest.raises(ValueError):
            client.fetch_category("coupon")
