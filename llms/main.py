from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException as StarletteHTTPException

from llms import __version__
from llms.api.handlers import register_endpoints
from llms.api.middleware.timing import setup_middlewares
from llms.api.routes import router as base_router
from llms.common.logging import (
    configure_logging,
    get_logger_with_request_id,
    get_request_id_from_request,
)
from llms.config.settings import Config, get_config_file_path, reload_config
from llms.config.watcher import ConfigWatcher
from llms.core.gateway import Gateway
from llms.models.errors import ApiError, ErrorDetail, ErrorResponse, get_error_response

_HTTP_ERROR_CODES = {
    400: ("invalid_request", "invalid_request_error"),
    404: ("not_found", "not_found_error"),
    405: ("method_not_allowed", "invalid_request_error"),
}


def create_app(
    config: Config | None = None,
    config_path: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    watch_config: bool = True,
) -> FastAPI:
    """
    创建应用

    Args:
        config: 应用配置，为空时从配置文件同步加载
        config_path: 配置文件路径，为空时使用 CONFIG_PATH 或默认路径
        transport: 上游 HTTP 传输层（测试时注入）
        watch_config: 是否监听配置文件变化
    """
    config_path = config_path or get_config_file_path()
    if config is None:
        config = Config.from_file_sync(config_path)

    gateway = Gateway(config, transport=transport)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """应用生命周期管理"""
        configure_logging(config.logging)
        await gateway.init()

        config_watcher = None
        if watch_config:

            async def on_config_reload():
                """配置重载时的回调函数"""
                new_config = await reload_config(config_path)
                configure_logging(new_config.logging)
                await gateway.reload(new_config)
                logger.info("配置热重载完成，服务已更新")

            config_watcher = ConfigWatcher(config_path)
            config_watcher.add_reload_callback(on_config_reload)
            await config_watcher.start_watching()
        app.state.config_watcher = config_watcher

        logger.info(
            f"启动 LLMs 服务器 - Host: {config.server.host}, Port: {config.server.port}, "
            f"LogLevel: {config.logging.level}"
        )

        try:
            yield
        finally:
            if config_watcher is not None:
                config_watcher.stop_watching()
            await gateway.shutdown()
            logger.info("服务器已停止")

    app = FastAPI(
        title="LLMs API",
        version=__version__,
        description="Route chat-completion requests to registered LLM providers.",
        lifespan=lifespan,
    )
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_middlewares(app)

    app.include_router(base_router)
    register_endpoints(app, gateway)
    register_exception_handlers(app)
    return app


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        bound_logger = get_logger_with_request_id(get_request_id_from_request(request))
        log = bound_logger.error if exc.status_code >= 500 else bound_logger.warning
        log(f"请求失败 - {exc.code} ({exc.status_code}): {exc.message}")

        status_code, content = get_error_response(exc)
        return JSONResponse(status_code=status_code, content=content)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """处理请求体验证错误，统一返回400"""
        bound_logger = get_logger_with_request_id(get_request_id_from_request(request))
        errors = exc.errors()
        bound_logger.warning(f"请求验证失败: {errors}")

        if errors:
            location = ".".join(str(part) for part in errors[0].get("loc", ()) if part != "body")
            message = f"{location}: {errors[0].get('msg')}" if location else errors[0].get("msg")
        else:
            message = "Invalid request"
        error = ErrorResponse(
            error=ErrorDetail(message=message, type="invalid_request_error", code="invalid_request")
        )
        return JSONResponse(status_code=400, content=error.model_dump())

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code, error_type = _HTTP_ERROR_CODES.get(exc.status_code, ("http_error", "api_error"))
        error = ErrorResponse(
            error=ErrorDetail(message=str(exc.detail), type=error_type, code=code)
        )
        return JSONResponse(status_code=exc.status_code, content=error.model_dump())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """全局异常处理，防止内部错误细节直接返回给客户端"""
        bound_logger = get_logger_with_request_id(get_request_id_from_request(request))
        bound_logger.opt(exception=exc).error(
            f"捕获未处理的服务器异常 - {type(exc).__name__}: {exc}"
        )
        status_code, content = get_error_response(exc)
        return JSONResponse(status_code=status_code, content=content)
