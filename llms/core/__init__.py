"""
核心路由与转换管道

主要组件:
- RouteRuleMatcher: 模型名称规则匹配
- ProviderRegistry: 提供商与模型路由表
- TransformerChain: 转换器链
- UpstreamDispatcher: 上游请求分发
- Gateway: 上述组件的运行时上下文
"""

from .dispatcher import RequestDeadline, UpstreamDispatcher
from .gateway import Gateway
from .pipeline import TransformerChain
from .registry import ProviderRegistry
from .router import DEFAULT_ROUTE_RULES, RouteRuleMatcher

__all__ = [
    "DEFAULT_ROUTE_RULES",
    "Gateway",
    "ProviderRegistry",
    "RequestDeadline",
    "RouteRuleMatcher",
    "TransformerChain",
    "UpstreamDispatcher",
]
