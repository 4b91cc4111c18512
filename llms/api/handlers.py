"""转换器端点处理

每个声明了 end_point 的转换器对应一个 POST 路由，处理流程：
解析模型 -> 请求转换 -> 上游分发 -> 响应转换 -> 格式化返回
"""

import json
import time
from typing import Any

from fastapi import APIRouter, FastAPI, Request
from starlette.responses import Response

from llms.common.logging import get_logger_with_request_id, get_request_id_from_request
from llms.core.formatter import format_response
from llms.core.gateway import Gateway
from llms.core.pipeline import TransformerChain
from llms.models.errors import InvalidRequestError
from llms.transformers.base import Transformer, TransformerContext


def extract_user_query(messages: Any, limit: int = 100) -> str:
    """提取最后一条用户消息的文本，用于日志"""
    if not isinstance(messages, list):
        return ""
    for message in reversed(messages):
        if not isinstance(message, dict) or message.get("role") != "user":
            continue
        content = message.get("content")
        if isinstance(content, list):
            content = " ".join(
                part.get("text", "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            )
        if isinstance(content, str):
            return content[:limit]
    return ""


async def read_json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidRequestError("Request body must be valid JSON") from e
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    return body


async def handle_transformer_endpoint(
    request: Request, gateway: Gateway, transformer: Transformer
) -> Response:
    start_time = time.time()
    request_id = get_request_id_from_request(request)
    bound_logger = get_logger_with_request_id(request_id)

    body = await read_json_body(request)
    raw_model = body.get("model")
    if not raw_model or not isinstance(raw_model, str):
        raise InvalidRequestError("Missing model in request body")
    if not body.get("stream"):
        body["stream"] = False

    route = gateway.resolve_model(raw_model, request_id)
    provider = route.provider
    user_query = extract_user_query(body.get("messages"))
    bound_logger.info(
        f"[ROUTE] 📥 RECEIVED - 接收请求: model={raw_model}, provider={provider.name}, "
        f"query={user_query!r}"
    )

    body["model"] = route.target_model
    context = TransformerContext(request_id, original_model=raw_model)
    chain = TransformerChain(transformer, provider, route.target_model)
    outbound = await chain.transform_request(body, request.headers, context)

    url = outbound.config.get("url") or provider.base_url
    bound_logger.info(
        f"[ROUTE] 🚀 EXECUTING - 执行请求: original={raw_model}, "
        f"final={outbound.body.get('model')}, provider={provider.name}, url={url}"
    )

    response = await gateway.dispatcher.dispatch(
        outbound.body,
        outbound.config,
        provider,
        bypass=chain.bypass,
        request_id=request_id,
    )
    try:
        response = await chain.transform_response(response, context)
    except Exception:
        # 释放上游连接和并发名额
        await response.aclose()
        raise

    duration_ms = round((time.time() - start_time) * 1000, 2)
    bound_logger.info(
        f"[ROUTE] ✅ COMPLETED - 请求完成: final={outbound.body.get('model')}, "
        f"provider={provider.name}, duration={duration_ms}ms"
    )
    return await format_response(response, body.get("stream") is True)


def create_endpoint_router(gateway: Gateway) -> APIRouter:
    """为每个端点转换器注册一个 POST 路由"""
    router = APIRouter()

    for transformer in gateway.transformers.get_endpoint_transformers():

        def make_endpoint(endpoint_transformer: Transformer):
            async def endpoint(request: Request) -> Response:
                return await handle_transformer_endpoint(request, gateway, endpoint_transformer)

            endpoint.__name__ = f"{endpoint_transformer.name}_endpoint"
            return endpoint

        router.add_api_route(
            transformer.end_point,
            make_endpoint(transformer),
            methods=["POST"],
            name=transformer.name,
        )
    return router


def register_endpoints(app: FastAPI, gateway: Gateway) -> None:
    app.include_router(create_endpoint_router(gateway))
