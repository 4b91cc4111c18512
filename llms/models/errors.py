"""标准化错误模型

所有对外暴露的错误都是 ApiError 的子类，由全局异常处理器统一转换为
{"error": {"message", "type", "code"}} 信封格式。
"""

from typing import Any

from pydantic import BaseModel, Field


class ErrorDetail(BaseModel):
    """错误详细信息"""

    message: str = Field(description="错误消息")
    type: str = Field("api_error", description="错误类型")
    code: str = Field("internal_error", description="错误代码")


class ErrorResponse(BaseModel):
    """统一错误响应信封"""

    error: ErrorDetail = Field(description="错误详情")


class ApiError(Exception):
    """带HTTP状态码和错误代码的API异常"""

    status_code: int = 500
    code: str = "internal_error"
    type: str = "api_error"

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
        type: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        if type is not None:
            self.type = type

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error=ErrorDetail(message=self.message, type=self.type, code=self.code)
        )


class InvalidRequestError(ApiError):
    """请求参数校验失败"""

    status_code = 400
    code = "invalid_request"
    type = "invalid_request_error"


class ProviderNotFoundError(ApiError):
    """提供商不存在"""

    status_code = 404
    code = "provider_not_found"
    type = "not_found_error"

    def __init__(self, message: str = "Provider not found"):
        super().__init__(message)


class ProviderExistsError(ApiError):
    """重复注册提供商"""

    status_code = 400
    code = "provider_exists"
    type = "invalid_request_error"


class ProviderDisabledError(ApiError):
    """提供商已被禁用"""

    status_code = 403
    code = "provider_disabled"
    type = "permission_error"


class ProviderResponseError(ApiError):
    """上游提供商返回了非2xx状态码"""

    code = "provider_response_error"

    def __init__(self, status: int, body: str, provider: str = "", model: str = ""):
        self.status = status
        self.body = body
        super().__init__(
            f"Error from provider({provider},{model}: {status}): {body}",
            status_code=status,
        )


class UpstreamTimeoutError(ApiError):
    """上游请求超时"""

    status_code = 504
    code = "upstream_timeout"
    type = "timeout_error"


class UpstreamConnectionError(ApiError):
    """无法连接上游提供商"""

    status_code = 502
    code = "upstream_unreachable"


class RequestAbortedError(ApiError):
    """请求被调用方取消"""

    status_code = 499
    code = "request_aborted"


def get_error_response(error: Exception) -> tuple[int, dict[str, Any]]:
    """将任意异常转换为 (状态码, 错误信封) 二元组

    非 ApiError 的异常一律视为 internal_error，且不向调用方透露内部细节。
    """
    if isinstance(error, ApiError):
        return error.status_code, error.to_response().model_dump()

    fallback = ErrorResponse(
        error=ErrorDetail(message="Internal Server Error", code="internal_error")
    )
    return 500, fallback.model_dump()
