"""
转换器管道

对单个请求按以下顺序执行转换器：

请求方向：端点 request_out -> 提供商级 request_in（注册顺序）-> 模型级 request_in（注册顺序）
响应方向：提供商级 response_out（逆序）-> 模型级 response_out（逆序）-> 端点 response_in

当提供商只配置了与端点相同的一个转换器时进入透传模式：请求体原样发送，
只执行端点的 auth。
"""

from collections.abc import Mapping
from typing import Any

from loguru import logger

from llms.models.provider import ProviderDescriptor
from llms.transformers.base import (
    Capability,
    ProviderResponse,
    TransformedRequest,
    Transformer,
    TransformerContext,
)

# 透传时不转发的调用方请求头
DROPPED_PASSTHROUGH_HEADERS = frozenset(
    {
        "content-length",
        "host",
        "authorization",
        "x-api-key",
        "connection",
        "keep-alive",
        "transfer-encoding",
        "upgrade",
    }
)


def merge_config(base: dict[str, Any], fragment: dict[str, Any] | None) -> dict[str, Any]:
    """合并出站配置片段，headers 按键合并（后者优先）"""
    if not fragment:
        return base
    merged = {**base, **fragment}
    if "headers" in base or "headers" in fragment:
        headers = {key.lower(): value for key, value in (base.get("headers") or {}).items()}
        for key, value in (fragment.get("headers") or {}).items():
            headers[key.lower()] = value
        merged["headers"] = headers
    return merged


def should_bypass(endpoint: Transformer, provider: ProviderDescriptor, model: str | None) -> bool:
    """提供商级链只有一个与端点同名的转换器，且模型级链为空或同样只有它"""
    chains = provider.transformers
    if chains is None or len(chains.use) != 1 or chains.use[0].name != endpoint.name:
        return False
    model_chain = chains.for_model(model)
    return not model_chain or (len(model_chain) == 1 and model_chain[0].name == endpoint.name)


class TransformerChain:
    """单个请求的转换器链"""

    def __init__(
        self,
        endpoint: Transformer,
        provider: ProviderDescriptor,
        model: str | None,
    ):
        self.endpoint = endpoint
        self.provider = provider
        self.model = model
        chains = provider.transformers
        self.provider_chain: list[Transformer] = list(chains.use) if chains else []
        self.model_chain: list[Transformer] = chains.for_model(model) if chains else []
        self.bypass = should_bypass(endpoint, provider, model)

    async def transform_request(
        self,
        body: dict[str, Any],
        headers: Mapping[str, str],
        context: TransformerContext,
    ) -> TransformedRequest:
        """
        执行请求阶段

        Args:
            body: 客户端请求体（model 已替换为目标模型）
            headers: 客户端请求头，仅在透传模式下使用
            context: 请求上下文

        Returns:
            出站请求体和合并后的出站配置
        """
        bound_logger = logger.bind(request_id=context.request_id or "---")

        if self.bypass:
            bound_logger.debug(
                f"透传模式: provider={self.provider.name}, transformer={self.endpoint.name}"
            )
            return await self._prepare_passthrough(body, headers, context)

        request = TransformedRequest(body)
        if self.endpoint.supports(Capability.REQUEST_OUT):
            request = await self.endpoint.request_out(request.body, context)

        for transformer in [*self.provider_chain, *self.model_chain]:
            if not transformer.supports(Capability.REQUEST_IN):
                continue
            result = await transformer.request_in(request.body, self.provider, context)
            request = TransformedRequest(result.body, merge_config(request.config, result.config))
        return request

    async def _prepare_passthrough(
        self,
        body: dict[str, Any],
        headers: Mapping[str, str],
        context: TransformerContext,
    ) -> TransformedRequest:
        forwarded = {
            key.lower(): value
            for key, value in headers.items()
            if key.lower() not in DROPPED_PASSTHROUGH_HEADERS
        }
        request = TransformedRequest(body, {"headers": forwarded})

        if self.endpoint.supports(Capability.AUTH):
            auth = await self.endpoint.auth(request.body, self.provider, context)
            request = TransformedRequest(auth.body, merge_config(request.config, auth.config))

        request.config["headers"].pop("host", None)
        return request

    async def transform_response(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        """执行响应阶段，透传模式下原样返回"""
        if self.bypass:
            return response

        for transformer in [*reversed(self.provider_chain), *reversed(self.model_chain)]:
            if transformer.supports(Capability.RESPONSE_OUT):
                response = await transformer.response_out(response, context)

        if self.endpoint.supports(Capability.RESPONSE_IN):
            response = await self.endpoint.response_in(response, context)
        return response
