"""言語モデル呼び出しのラッパー

- LLMProvider: メッセージ列 + ツール定義を受け取り、テキストかツール呼び出しを返す
- AnthropicProvider: Claude API による実装
- call_with_retry: レート制限時のみ、待機時間に上限を付けてリトライする
"""

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

import anthropic

from storebot.config import settings
from storebot.errors import ModelCallError, ModelNotConfiguredError, ModelRateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict


@dataclass
class ModelReply:
    text: str
    tool_call: ToolCall | None = None
    # フォローアップ呼び出しで assistant メッセージとして送り返すブロック
    content: list[dict] = field(default_factory=list)
    input_tokens: int | None = None
    output_tokens: int | None = None
    model: str | None = None

    def as_assistant_message(self) -> dict:
        return {"role": "assistant", "content": self.content or self.text}


class LLMProvider(ABC):
    """言語モデルプロバイダーの抽象基底クラス"""

    @abstractmethod
    def complete(
        self,
        system: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        tools: list[dict] | None = None,
    ) -> ModelReply:
        """1回分のモデル呼び出し。

        Raises:
            ModelRateLimitError: レート制限（リトライ可能）
            ModelCallError: その他の呼び出し失敗
        """


def _parse_retry_after(headers) -> float | None:
    """retry-after-ms / retry-after ヘッダーから待機秒数を取得する"""
    if headers is None:
        return None
    for name, scale in (("retry-after-ms", 0.001), ("retry-after", 1.0)):
        value = headers.get(name)
        if not value:
            continue
        try:
            seconds = float(value) * scale
        except ValueError:
            continue
        if seconds > 0:
            return seconds
    return None


class AnthropicProvider(LLMProvider):
    """Claude Messages API による実装"""

    def __init__(self, api_key: str, model: str | None = None):
        if not api_key:
            raise ModelNotConfiguredError("Anthropic API key is not configured")
        # リトライは call_with_retry 側で制御する
        self._client = anthropic.Anthropic(api_key=api_key, max_retries=0)
        self.model = model or settings.llm_model

    def complete(
        self,
        system: str,
        messages: list[dict],
        temperature: float,
        max_tokens: int,
        tools: list[dict] | None = None,
    ) -> ModelReply:
        params = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system,
            "messages": messages,
        }
        if tools:
            params["tools"] = tools

        try:
            response = self._client.messages.create(**params)
        except anthropic.RateLimitError as e:
            raise ModelRateLimitError(
                str(e), retry_after=_parse_retry_after(e.response.headers)
            ) from e
        except anthropic.APIError as e:
            raise ModelCallError(f"{type(e).__name__}: {e}") from e

        text_parts = []
        content = []
        tool_call = None
        for block in response.content:
            if block.type == "text":
                text_parts.append(block.text)
                content.append({"type": "text", "text": block.text})
            elif block.type == "tool_use":
                content.append({
                    "type": "tool_use",
                    "id": block.id,
                    "name": block.name,
                    "input": block.input,
                })
                if tool_call is None:
                    tool_call = ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=block.input if isinstance(block.input, dict) else {},
                    )

        return ModelReply(
            text="".join(text_parts).strip(),
            tool_call=tool_call,
            content=content,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            model=response.model,
        )


def get_provider(api_key: str | None = None) -> LLMProvider:
    """テナント設定のキー → 環境設定のキーの順で使う"""
    return AnthropicProvider(api_key or settings.anthropic_api_key)


def call_with_retry(
    fn: Callable[[], T],
    max_retries: int | None = None,
    max_wait: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """レート制限時のみリトライする

    待機時間: プロバイダーのヒントがあればそれ、なければ 1秒 × 試行回数。
    いずれも max_wait 秒で打ち切る。レート制限以外の例外は即座に送出する。
    """
    max_retries = settings.llm_max_retries if max_retries is None else max_retries
    max_wait = settings.llm_max_retry_wait_seconds if max_wait is None else max_wait

    attempt = 0
    while True:
        try:
            return fn()
        except ModelRateLimitError as e:
            if attempt >= max_retries:
                raise
            attempt += 1
            wait = min(e.retry_after or 1.0 * attempt, max_wait)
            logger.warning(
                "Model rate limited. Retrying in %.2fs (attempt %d/%d)",
                wait, attempt, max_retries,
            )
            sleep(wait)
