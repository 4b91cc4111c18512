"""
网关上下文

Gateway 把转换器服务、提供商注册表、路由规则匹配器和上游分发器组合在一起，
由应用在启动时创建并保存在 app.state.gateway 上。
"""

from typing import Any

import httpx
from loguru import logger

from llms.config.settings import Config, ProviderConfig
from llms.models.errors import (
    InvalidRequestError,
    ProviderDisabledError,
    ProviderExistsError,
    ProviderNotFoundError,
)
from llms.models.provider import ProviderDescriptor, RegisterProviderRequest
from llms.models.routing import RouteInfo
from llms.transformers.service import TransformerService

from .dispatcher import UpstreamDispatcher
from .registry import ProviderRegistry
from .router import RouteRuleMatcher


def validate_base_url(base_url: str) -> None:
    try:
        url = httpx.URL(base_url)
    except (httpx.InvalidURL, TypeError) as e:
        raise InvalidRequestError("Valid base URL is required") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise InvalidRequestError("Valid base URL is required")


class Gateway:
    """网关运行时上下文"""

    def __init__(self, config: Config, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self.transformers = TransformerService()
        self.transformers.initialize(config.transformers)
        self.registry = ProviderRegistry()
        self.matcher = RouteRuleMatcher(config.router.rules)
        self.dispatcher = UpstreamDispatcher(
            timeout=config.api_timeout_ms / 1000,
            connect_timeout=config.connect_timeout_ms / 1000,
            https_proxy=config.get_https_proxy(),
            transport=transport,
        )
        self._config_providers: set[str] = set()

    async def init(self) -> None:
        """注册配置文件中的提供商"""
        self._register_config_providers(self.config.providers)
        logger.info(
            f"网关初始化完成: providers={len(self.registry.list_providers())}, "
            f"rules={len(self.matcher.rules)}, transformers={self.transformers.names()}"
        )

    async def shutdown(self) -> None:
        await self.dispatcher.aclose()
        logger.info("网关已关闭")

    async def reload(self, config: Config) -> None:
        """应用新配置：重建路由规则，并同步配置文件中定义的提供商

        通过 API 动态注册的提供商不受影响。
        """
        self.config = config
        for plugin in config.transformers:
            self.transformers.register_transformer_from_config(plugin.path, plugin.options)
        self.matcher = RouteRuleMatcher(config.router.rules)
        self.dispatcher.timeout = config.api_timeout_ms / 1000
        self.dispatcher.connect_timeout = config.connect_timeout_ms / 1000
        self.dispatcher.https_proxy = config.get_https_proxy()

        new_names = {provider.name for provider in config.providers}
        for name in self._config_providers - new_names:
            self.registry.delete(name)
        self._config_providers.clear()
        self._register_config_providers(config.providers)
        logger.info(f"网关配置已重新加载: providers={len(self.registry.list_providers())}")

    def _register_config_providers(self, providers: list[ProviderConfig]) -> None:
        for provider_config in providers:
            try:
                self.register_provider(provider_config.to_descriptor_data())
            except Exception as e:
                logger.error(f"{provider_config.name} 提供商注册失败: {e}")
                continue
            self._config_providers.add(provider_config.name)

    def register_provider(self, data: dict[str, Any], strict: bool = False) -> ProviderDescriptor:
        """根据字典数据构造提供商描述并注册"""
        descriptor = ProviderDescriptor.model_validate(data)
        descriptor.transformers = self.transformers.build_provider_transformers(
            descriptor.transformer, strict=strict
        )
        return self.registry.register(descriptor)

    def create_provider(self, request: RegisterProviderRequest) -> ProviderDescriptor:
        """POST /providers：校验并注册新的提供商

        Raises:
            InvalidRequestError: 字段为空或 baseUrl 无效
            ProviderExistsError: 同名提供商已存在
        """
        if not request.name.strip():
            raise InvalidRequestError("Provider name is required")
        if not request.id.strip():
            raise InvalidRequestError("Provider id is required")
        validate_base_url(request.base_url)
        if not request.api_key.strip():
            raise InvalidRequestError("API key is required")
        if not request.models or any(not model.strip() for model in request.models):
            raise InvalidRequestError("At least one model is required")

        if self.registry.get(request.name) is not None:
            raise ProviderExistsError(f"Provider with name '{request.name}' already exists")

        return self.register_provider(request.model_dump(exclude_none=True), strict=True)

    def get_provider(self, name: str) -> ProviderDescriptor:
        provider = self.registry.get(name)
        if provider is None:
            raise ProviderNotFoundError(f"Provider '{name}' not found")
        return provider

    def update_provider(self, name: str, patch: dict[str, Any]) -> ProviderDescriptor:
        if "base_url" in patch:
            validate_base_url(patch["base_url"])
        if "models" in patch and (
            not patch["models"] or any(not model.strip() for model in patch["models"])
        ):
            raise InvalidRequestError("At least one model is required")
        if "transformer" in patch:
            patch = {
                **patch,
                "transformers": self.transformers.build_provider_transformers(
                    patch["transformer"], strict=True
                ),
            }

        provider = self.registry.update(name, patch)
        if provider is None:
            raise ProviderNotFoundError(f"Provider '{name}' not found")
        return provider

    def delete_provider(self, name: str) -> None:
        if not self.registry.delete(name):
            raise ProviderNotFoundError(f"Provider '{name}' not found")
        self._config_providers.discard(name)

    def toggle_provider(self, name: str, enabled: bool) -> ProviderDescriptor:
        if not self.registry.toggle_enabled(name, enabled):
            raise ProviderNotFoundError(f"Provider '{name}' not found")
        return self.get_provider(name)

    def resolve_model(self, raw_model: str, request_id: str | None = None) -> RouteInfo:
        """
        把客户端传入的模型名解析为提供商和目标模型

        "provider,model" 按字面解析；否则依次尝试路由规则、注册表简写键、
        默认模型（router.default）。

        Raises:
            InvalidRequestError: 模型部分为空
            ProviderNotFoundError: 提供商不存在或无法解析
            ProviderDisabledError: 提供商已被禁用
        """
        bound_logger = logger.bind(request_id=request_id or "---")

        if "," in raw_model:
            route = self._resolve_explicit(raw_model)
        else:
            route = self._resolve_bare(raw_model, bound_logger)

        if not route.provider.enabled:
            raise ProviderDisabledError(f"Provider '{route.provider.name}' is disabled")
        return route

    def _resolve_explicit(self, raw_model: str) -> RouteInfo:
        provider_name, _, model = raw_model.partition(",")
        provider = self.registry.get(provider_name)
        if provider is None:
            raise ProviderNotFoundError(f"Provider '{provider_name}' not found")
        if not model.strip():
            raise InvalidRequestError(f"Model name is empty in '{raw_model}'")
        return RouteInfo(provider=provider, original_model=raw_model, target_model=model)

    def _resolve_bare(self, raw_model: str, bound_logger) -> RouteInfo:
        router_config = self.config.router

        match = self.matcher.resolve(raw_model, router_config.resolve_default_provider())
        if match is not None:
            provider_name, _, model = match.model.partition(",")
            provider = self.registry.get(provider_name)
            if provider is not None:
                bound_logger.info(
                    f"🔄 路由规则命中: {raw_model} -> {match.model} ({match.description})"
                )
                return RouteInfo(provider=provider, original_model=raw_model, target_model=model)
            bound_logger.warning(f"路由规则命中但提供商未注册: {match.model}")

        route = self.registry.resolve(raw_model)
        if route is not None:
            return route

        if router_config.default:
            bound_logger.info(f"🔄 使用默认模型: {raw_model} -> {router_config.default}")
            route = self._resolve_explicit(router_config.default)
            return RouteInfo(
                provider=route.provider,
                original_model=raw_model,
                target_model=route.target_model,
            )

        raise ProviderNotFoundError(f"No provider found for model '{raw_model}'")
