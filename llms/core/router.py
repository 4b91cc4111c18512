"""
模型路由规则匹配

将客户端传入的模型名称按规则改写为 provider,model 格式。
规则按顺序匹配，自定义规则优先于内置默认规则。
"""

import re

from loguru import logger

from llms.models.routing import RouteMatch, RouteRule

DEFAULT_ROUTE_RULES: tuple[RouteRule, ...] = (
    RouteRule(
        pattern="claude-haiku|haiku",
        target_model="anthropic/claude-haiku-4.5",
        provider="openrouter",
        description="识别 Claude Haiku 模型",
    ),
    RouteRule(
        pattern="claude-sonnet|sonnet",
        target_model="anthropic/claude-sonnet-4.5",
        provider="openrouter",
        description="识别 Claude Sonnet 模型",
    ),
    RouteRule(
        pattern="claude-opus|opus",
        target_model="anthropic/claude-opus-4.1",
        provider="openrouter",
        description="识别 Claude Opus 模型",
    ),
)

_PLACEHOLDER = re.compile(r"\$(\d+)")


class RouteRuleMatcher:
    """
    路由规则匹配器

    正则在构造时一次性编译，之后只读，可以被并发调用。
    无法编译的规则会记录警告并被跳过。
    """

    def __init__(
        self,
        rules: list[RouteRule] | None = None,
        include_defaults: bool = True,
    ):
        self._rules: list[tuple[RouteRule, re.Pattern[str]]] = []

        all_rules = list(rules or [])
        if include_defaults:
            all_rules.extend(DEFAULT_ROUTE_RULES)

        for rule in all_rules:
            try:
                compiled = re.compile(rule.pattern, re.IGNORECASE)
            except re.error as e:
                logger.warning(f"路由规则中的正则无效，已跳过: {rule.pattern} ({e})")
                continue
            self._rules.append((rule, compiled))

    @property
    def rules(self) -> list[RouteRule]:
        return [rule for rule, _ in self._rules]

    def resolve(self, raw_model: str, default_provider: str | None = None) -> RouteMatch | None:
        """
        匹配模型名称

        Args:
            raw_model: 客户端传入的模型名称
            default_provider: 规则未指定提供商时使用的默认提供商

        Returns:
            匹配结果（model 为 provider,model 格式），无规则匹配时返回 None
        """
        if not raw_model or not isinstance(raw_model, str):
            return None

        lowered = raw_model.lower()
        for rule, pattern in self._rules:
            match = pattern.search(lowered)
            if not match:
                continue

            provider = rule.provider or default_provider
            if not provider:
                continue

            target = rule.target_model
            if "$" in target:
                # 在原始输入上重新匹配以保留大小写
                target = self._substitute(target, pattern.search(raw_model) or match, raw_model)

            return RouteMatch(model=f"{provider},{target}", description=rule.description)

        return None

    @staticmethod
    def _substitute(template: str, match: re.Match[str], raw_model: str) -> str:
        if template.strip() == "$0" and len(match.group(0)) < len(raw_model):
            return raw_model

        def replace(placeholder: re.Match[str]) -> str:
            index = int(placeholder.group(1))
            if index > (match.re.groups):
                return placeholder.group(0)
            return match.group(index) or ""

        return _PLACEHOLDER.sub(replace, template)
