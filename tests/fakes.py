"""テスト用のカタログ・言語モデルの代替実装"""

from storebot.errors import CatalogPermissionError
from storebot.services.llm_client import LLMProvider, ModelReply, ToolCall


class FakeCatalog:
    """fetch_category の戻り値をカテゴリごとに固定するクライアント

    値に例外クラス/インスタンスを入れるとそのカテゴリで送出する。
    """

    def __init__(self, data: dict | None = None, shop: dict | None = None):
        self.data = data or {}
        self.shop = shop or {"name": "Demo Store", "currency": "EUR"}
        self.closed = False

    def __call__(self, domain, token):
        return self

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed = True

    def fetch_shop_info(self):
        if isinstance(self.shop, Exception):
            raise self.shop
        return self.shop

    def fetch_category(self, category):
        value = self.data.get(category, [])
        if isinstance(value, Exception):
            raise value
        return iter(value)


def denied(category: str) -> CatalogPermissionError:
    return CatalogPermissionError(f"Access denied for {category} field")


class FakeProvider(LLMProvider):
    """用意した返答（または例外）を順番に返す"""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def complete(self, system, messages, temperature, max_tokens, tools=None):
        self.calls.append({
            "system": system,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "tools": tools,
        })
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def text_reply(text: str) -> ModelReply:
    return ModelReply(text=text, content=[{"type": "text", "text": text}])


def tool_reply(arguments: dict, call_id: str = "toolu_01") -> ModelReply:
    return ModelReply(
        text="",
        tool_call=ToolCall(id=call_id, name="search_store_content", arguments=arguments),
        content=[{
            "type": "tool_use",
            "id": call_id,
            "name": "search_store_content",
            "input": arguments,
        }],
    )
