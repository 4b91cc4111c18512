"""请求ID与计时中间件"""

import time
from collections.abc import Callable

from fastapi import FastAPI, Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

from llms.common.logging import generate_request_id, get_logger_with_request_id
from llms.models.errors import get_error_response

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """为每个请求分配请求ID并记录处理时间"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        request_id = generate_request_id()
        request.state.request_id = request_id
        bound_logger = get_logger_with_request_id(request_id)

        try:
            response = await call_next(request)
        except Exception as exc:
            bound_logger.opt(exception=exc).error(
                f"请求处理错误 - {request.method} {request.url.path}: "
                f"{type(exc).__name__}: {exc}"
            )
            status_code, content = get_error_response(exc)
            response = JSONResponse(status_code=status_code, content=content)

        response_time = time.time() - start_time
        bound_logger.info(
            f"请求完成 - {request.method} {request.url.path} "
            f"Status: {response.status_code}, Time: {round(response_time * 1000, 2)}ms"
        )

        response.headers["X-Process-Time"] = f"{response_time:.3f}s"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def setup_middlewares(app: FastAPI) -> None:
    """设置所有中间件"""
    app.add_middleware(RequestTimingMiddleware)
