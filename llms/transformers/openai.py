"""OpenAI Chat Completions 端点转换器"""

from typing import Any

from pydantic import ValidationError

from llms.models.errors import InvalidRequestError
from llms.models.unified import UnifiedChatRequest

from .base import Capability, ProviderResponse, TransformedRequest, Transformer, TransformerContext


class OpenAITransformer(Transformer):
    """统一格式本身就是 OpenAI 风格，这里只做校验，响应原样返回"""

    name = "openai"
    end_point = "/v1/chat/completions"
    capabilities = frozenset({Capability.REQUEST_OUT, Capability.RESPONSE_IN})

    async def request_out(
        self, body: dict[str, Any], context: TransformerContext
    ) -> TransformedRequest:
        try:
            unified = UnifiedChatRequest.model_validate(body)
        except ValidationError as e:
            raise InvalidRequestError(f"Invalid chat request: {e.errors()[0]['msg']}") from e
        context.setdefault("original_model", unified.model)
        context["stream"] = bool(unified.stream)
        return TransformedRequest(unified.to_payload())

    async def response_in(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        return response
