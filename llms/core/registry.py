"""
提供商注册表

保存提供商以及模型路由表。每个模型会生成两个路由键：
- "provider,model"（完整格式，始终注册）
- "model"（简写格式，仅在未被占用时注册，先注册者优先）

当简写键的拥有者被删除或不再提供该模型时，简写键会按注册顺序
转交给下一个仍提供该模型的提供商。
"""

import threading
from typing import Any

from loguru import logger

from llms.models.provider import ProviderDescriptor
from llms.models.routing import RouteEntry, RouteInfo


class ProviderRegistry:
    """提供商与模型路由表，所有读写都在可重入锁内完成"""

    def __init__(self):
        self._providers: dict[str, ProviderDescriptor] = {}
        self._routes: dict[str, RouteEntry] = {}
        self._lock = threading.RLock()

    def register(self, descriptor: ProviderDescriptor) -> ProviderDescriptor:
        """注册提供商，同名提供商会被替换"""
        with self._lock:
            previous = self._providers.get(descriptor.name)
            if previous is not None:
                self._purge_routes(previous.name, previous.models)

            self._providers[descriptor.name] = descriptor
            self._install_routes(descriptor.name, descriptor.models)

            if previous is not None:
                self._reassign_bare_keys(previous.models)

        logger.info(f"注册提供商: {descriptor.name} (models: {len(descriptor.models)})")
        return descriptor

    def resolve(self, model_key: str) -> RouteInfo | None:
        """按路由键（完整或简写）解析提供商和目标模型"""
        with self._lock:
            route = self._routes.get(model_key)
            if route is None:
                return None
            provider = self._providers.get(route.provider)
            if provider is None:
                return None
            return RouteInfo(provider=provider, original_model=model_key, target_model=route.model)

    def get(self, name: str) -> ProviderDescriptor | None:
        with self._lock:
            return self._providers.get(name)

    def list_providers(self) -> list[ProviderDescriptor]:
        with self._lock:
            return list(self._providers.values())

    def routes(self) -> dict[str, RouteEntry]:
        with self._lock:
            return dict(self._routes)

    def available_model_names(self) -> list[str]:
        """所有可用的模型名称（简写和完整格式）"""
        with self._lock:
            names = []
            for provider in self._providers.values():
                for model in provider.models:
                    names.append(model)
                    names.append(f"{provider.name},{model}")
            return names

    def available_models(self) -> dict[str, Any]:
        """OpenAI 风格的模型列表"""
        with self._lock:
            data = []
            for provider in self._providers.values():
                for model in provider.models:
                    for model_id in (model, f"{provider.name},{model}"):
                        data.append(
                            {
                                "id": model_id,
                                "object": "model",
                                "owned_by": provider.name,
                                "provider": provider.name,
                            }
                        )
            return {"object": "list", "data": data}

    def update(self, name: str, patch: dict[str, Any]) -> ProviderDescriptor | None:
        """
        合并更新提供商字段

        Args:
            name: 提供商名称
            patch: 需要更新的字段（name 不可修改）

        Returns:
            更新后的提供商，不存在时返回 None
        """
        patch = {key: value for key, value in patch.items() if key != "name"}
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                return None

            updated = provider.model_copy(update=patch)
            if "models" in patch:
                # 重新校验以去重
                updated.models = list(dict.fromkeys(updated.models))
            self._providers[name] = updated

            if "models" in patch:
                self._purge_routes(name, provider.models)
                self._install_routes(name, updated.models)
                self._reassign_bare_keys(provider.models)

        logger.info(f"更新提供商: {name} (fields: {sorted(patch)})")
        return updated

    def delete(self, name: str) -> bool:
        with self._lock:
            provider = self._providers.pop(name, None)
            if provider is None:
                return False
            self._purge_routes(name, provider.models)
            self._reassign_bare_keys(provider.models)

        logger.info(f"删除提供商: {name}")
        return True

    def toggle_enabled(self, name: str, enabled: bool) -> bool:
        with self._lock:
            provider = self._providers.get(name)
            if provider is None:
                return False
            provider.enabled = enabled

        logger.info(f"提供商 {name} 已{'启用' if enabled else '禁用'}")
        return True

    def _install_routes(self, name: str, models: list[str]) -> None:
        for model in models:
            route = RouteEntry.for_model(name, model)
            self._routes[route.full_model] = route
            self._routes.setdefault(model, route)

    def _purge_routes(self, name: str, models: list[str]) -> None:
        """删除该提供商的完整路由键，以及它拥有的简写路由键"""
        for model in models:
            self._routes.pop(f"{name},{model}", None)
            bare = self._routes.get(model)
            if bare is not None and bare.provider == name:
                del self._routes[model]

    def _reassign_bare_keys(self, models: list[str]) -> None:
        """将空出来的简写键转交给按注册顺序第一个仍提供该模型的提供商"""
        for model in models:
            if model in self._routes:
                continue
            for provider in self._providers.values():
                if model in provider.models:
                    self._routes[model] = RouteEntry.for_model(provider.name, model)
                    break
