"""转换器注册服务

按名称保存转换器工厂（通常就是转换器类本身），并负责：
- 注册内置转换器
- 按配置加载外部转换器（"package.module:Factory" 形式）
- 将提供商配置中的转换器名称解析为实例链
"""

import importlib
from typing import Any

from loguru import logger

from llms.models.errors import InvalidRequestError

from .base import ProviderTransformers, Transformer, TransformerFactory


class TransformerService:
    """转换器服务：名称 -> 工厂"""

    def __init__(self):
        self._factories: dict[str, TransformerFactory] = {}
        self._endpoint_instances: dict[str, Transformer] = {}

    def register_transformer(self, name: str, factory: TransformerFactory) -> None:
        """注册转换器工厂"""
        self._factories[name] = factory
        self._endpoint_instances.pop(name, None)
        end_point = getattr(factory, "end_point", None)
        logger.info(
            f"注册转换器: {name}"
            + (f" (endpoint: {end_point})" if end_point else " (no endpoint)")
        )

    def has_transformer(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return list(self._factories)

    def create(self, name: str, options: dict[str, Any] | None = None) -> Transformer:
        """按名称创建转换器实例

        Raises:
            KeyError: 转换器未注册
        """
        factory = self._factories[name]
        instance = factory(options)
        if not instance.name:
            raise ValueError(f"Transformer '{name}' instance has no name")
        return instance

    def get_endpoint_transformers(self) -> list[Transformer]:
        """返回所有声明了端点的转换器实例（每个名称一个共享实例）"""
        result = []
        for name, factory in self._factories.items():
            if not getattr(factory, "end_point", None):
                continue
            if name not in self._endpoint_instances:
                self._endpoint_instances[name] = self.create(name)
            result.append(self._endpoint_instances[name])
        return result

    def initialize(self, plugins: list[Any] | None = None) -> None:
        """注册内置转换器并加载配置中的外部转换器"""
        from . import BUILTIN_TRANSFORMERS

        for transformer_cls in BUILTIN_TRANSFORMERS:
            self.register_transformer(transformer_cls.name, transformer_cls)

        for plugin in plugins or []:
            self.register_transformer_from_config(plugin.path, plugin.options)

    def register_transformer_from_config(
        self, path: str, options: dict[str, Any] | None = None
    ) -> bool:
        """从 "package.module:Factory" 路径加载外部转换器"""
        try:
            module_name, _, attr = path.partition(":")
            module = importlib.import_module(module_name)
            factory = getattr(module, attr or "Transformer")
            instance = factory(options)
            if not isinstance(instance, Transformer) or not instance.name:
                raise TypeError(f"{path} did not produce a named Transformer")
        except Exception as e:
            logger.error(f"加载转换器失败 ({path}): {e}")
            return False

        def bound_factory(opts: dict[str, Any] | None = None) -> Transformer:
            return factory({**(options or {}), **(opts or {})})

        bound_factory.end_point = instance.end_point
        self.register_transformer(instance.name, bound_factory)
        return True

    def build_provider_transformers(
        self, config: dict[str, Any] | None, strict: bool = False
    ) -> ProviderTransformers | None:
        """将提供商的转换器配置解析为实例链

        配置格式::

            {"use": ["anthropic", ["overrides", {"max_tokens": 1024}]],
             "some-model": {"use": ["reasoning"]}}

        Args:
            config: 转换器配置
            strict: 为 True 时遇到未注册的转换器抛出 InvalidRequestError，
                否则记录警告并跳过

        Returns:
            解析后的转换器链；config 为空时返回 None
        """
        if not config:
            return None

        chains = ProviderTransformers()
        for key, value in config.items():
            if key == "use":
                chains.use = self._build_chain(value, strict)
            elif isinstance(value, dict) and "use" in value:
                chains.models[key] = self._build_chain(value["use"], strict)
        return chains

    def _build_chain(self, entries: Any, strict: bool) -> list[Transformer]:
        if not isinstance(entries, list):
            if strict:
                raise InvalidRequestError("Transformer 'use' must be a list")
            return []

        chain = []
        for entry in entries:
            if isinstance(entry, str):
                name, options = entry, None
            elif isinstance(entry, list | tuple) and entry and isinstance(entry[0], str):
                name = entry[0]
                options = entry[1] if len(entry) > 1 else None
            else:
                name, options = None, None

            if name is None or not self.has_transformer(name):
                if strict:
                    raise InvalidRequestError(f"Unknown transformer: {entry!r}")
                logger.warning(f"忽略未注册的转换器: {entry!r}")
                continue
            chain.append(self.create(name, options))
        return chain
