"""Anthropic Messages 端点转换器"""

from typing import TYPE_CHECKING, Any

from loguru import logger
from pydantic import ValidationError

from llms.models.anthropic import AnthropicRequest
from llms.models.errors import InvalidRequestError

from .base import (
    Capability,
    ProviderResponse,
    TransformedRequest,
    Transformer,
    TransformerContext,
    is_event_stream,
)
from .converters import (
    AnthropicToUnifiedConverter,
    UnifiedToAnthropicConverter,
    convert_openai_stream,
)

if TYPE_CHECKING:
    from llms.models.provider import ProviderDescriptor

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicTransformer(Transformer):
    """
    在 /v1/messages 上接收 Anthropic 格式请求

    - request_out: Anthropic 请求 -> 统一格式
    - response_in: 统一格式（OpenAI 风格）JSON / SSE -> Anthropic 消息 / 事件
    - auth: 直连 Anthropic 协议的提供商时注入 x-api-key
    """

    name = "anthropic"
    end_point = "/v1/messages"
    capabilities = frozenset(
        {Capability.REQUEST_OUT, Capability.RESPONSE_IN, Capability.AUTH}
    )

    async def request_out(
        self, body: dict[str, Any], context: TransformerContext
    ) -> TransformedRequest:
        try:
            anthropic_request = AnthropicRequest.model_validate(body)
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid Anthropic request: {e.errors()[0]['msg']}"
            ) from e

        context.setdefault("original_model", anthropic_request.model)
        context["stream"] = bool(anthropic_request.stream)

        unified = AnthropicToUnifiedConverter.convert(anthropic_request)
        logger.bind(request_id=context.request_id or "---").debug(
            f"Anthropic请求已转换为统一格式: messages={len(unified.messages)}, "
            f"tools={len(unified.tools or [])}"
        )
        return TransformedRequest(unified.to_payload())

    async def response_in(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        if not response.ok:
            return response

        model = context.get("original_model", "")
        if is_event_stream(response, context):
            stream = convert_openai_stream(response.aiter_lines(), model, context.request_id)
            replaced = response.with_stream(stream)
            replaced.headers = {"content-type": "text/event-stream"}
            return replaced

        data = await response.json()
        converted = UnifiedToAnthropicConverter.convert_response(data, model)
        return ProviderResponse.from_json(
            converted.model_dump(exclude_none=True), response.status_code
        )

    async def auth(
        self,
        body: dict[str, Any],
        provider: "ProviderDescriptor",
        context: TransformerContext,
    ) -> TransformedRequest:
        headers = {
            "x-api-key": provider.api_key,
            "anthropic-version": self.options.get("version", ANTHROPIC_VERSION),
            "authorization": None,
        }
        return TransformedRequest(body, {"headers": headers})
