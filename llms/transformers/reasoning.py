"""推理参数转换器

请求方向：把统一格式中的 reasoning 控制映射为提供商字段
（Anthropic 协议为 thinking，其余保留 OpenRouter 风格的 reasoning）。
响应方向：把提供商返回的 reasoning 字段重命名为 reasoning_content。
"""

import json
from collections.abc import AsyncIterator
from typing import TYPE_CHECKING, Any

from loguru import logger

from .base import (
    Capability,
    ProviderResponse,
    TransformedRequest,
    Transformer,
    TransformerContext,
    is_event_stream,
)

if TYPE_CHECKING:
    from llms.models.provider import ProviderDescriptor

DEFAULT_BUDGET_TOKENS = 1024


def _rename_reasoning(message: dict[str, Any]) -> bool:
    if "reasoning" in message and "reasoning_content" not in message:
        message["reasoning_content"] = message.pop("reasoning")
        return True
    return False


class ReasoningTransformer(Transformer):
    name = "reasoning"
    capabilities = frozenset({Capability.REQUEST_IN, Capability.RESPONSE_OUT})

    async def request_in(
        self,
        body: dict[str, Any],
        provider: "ProviderDescriptor",
        context: TransformerContext,
    ) -> TransformedRequest:
        body = dict(body)
        reasoning = body.pop("reasoning", None)
        if not reasoning:
            return TransformedRequest(body)

        enabled = reasoning.get("enabled")
        effort = reasoning.get("effort")
        if enabled is False or effort == "none":
            if provider.type == "anthropic":
                body["thinking"] = {"type": "disabled"}
            return TransformedRequest(body)

        budget = reasoning.get("max_tokens") or self.options.get(
            "budget_tokens", DEFAULT_BUDGET_TOKENS
        )
        if provider.type == "anthropic":
            body["thinking"] = {"type": "enabled", "budget_tokens": budget}
        else:
            mapped = {"enabled": True}
            if effort:
                mapped["effort"] = effort
            elif reasoning.get("max_tokens"):
                mapped["max_tokens"] = reasoning["max_tokens"]
            body["reasoning"] = mapped
        return TransformedRequest(body)

    async def response_out(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        if not response.ok:
            return response

        if is_event_stream(response, context):
            return response.with_stream(self._rename_stream(response.aiter_lines()))

        data = await response.json()
        for choice in data.get("choices") or []:
            _rename_reasoning(choice.get("message") or {})
        return ProviderResponse.from_json(data, response.status_code)

    async def _rename_stream(self, lines: AsyncIterator[str]) -> AsyncIterator[bytes]:
        async for line in lines:
            if line.startswith("data:") and line[5:].strip() not in ("", "[DONE]"):
                try:
                    chunk = json.loads(line[5:].strip())
                except json.JSONDecodeError:
                    logger.warning(f"无法解析的流式数据块: {line[:200]}")
                else:
                    renamed = False
                    for choice in chunk.get("choices") or []:
                        renamed |= _rename_reasoning(choice.get("delta") or {})
                    if renamed:
                        line = "data: " + json.dumps(chunk, ensure_ascii=False)
            yield (line + "\n").encode("utf-8")
