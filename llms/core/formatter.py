"""响应格式化：把最终的 ProviderResponse 转换为 FastAPI 响应"""

from fastapi.responses import JSONResponse, StreamingResponse
from starlette.responses import Response

from llms.transformers.base import ProviderResponse

SSE_HEADERS = {
    "Content-Type": "text/event-stream",
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


async def format_response(response: ProviderResponse, stream: bool) -> Response:
    """
    格式化响应

    Args:
        response: 经过响应转换后的提供商响应
        stream: 客户端是否请求了流式响应

    Returns:
        流式请求返回 text/event-stream 的 StreamingResponse，否则返回 JSONResponse
    """
    if stream:
        return StreamingResponse(
            response.aiter_bytes(),
            status_code=response.status_code,
            headers=SSE_HEADERS,
        )

    data = await response.json()
    return JSONResponse(content=data, status_code=response.status_code)
