"""中间件"""

from .timing import RequestTimingMiddleware, setup_middlewares

__all__ = ["RequestTimingMiddleware", "setup_middlewares"]
