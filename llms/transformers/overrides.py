"""采样参数覆盖转换器"""

from typing import TYPE_CHECKING, Any

from loguru import logger

from .base import Capability, TransformedRequest, Transformer, TransformerContext

if TYPE_CHECKING:
    from llms.models.provider import ProviderDescriptor

OVERRIDABLE_PARAMETERS = ("max_tokens", "temperature", "top_p", "top_k")


class ParameterOverridesTransformer(Transformer):
    """
    用配置中的值强制覆盖请求参数

    配置示例::

        ["overrides", {"max_tokens": 8192, "temperature": 0.7}]
    """

    name = "overrides"
    capabilities = frozenset({Capability.REQUEST_IN})

    async def request_in(
        self,
        body: dict[str, Any],
        provider: "ProviderDescriptor",
        context: TransformerContext,
    ) -> TransformedRequest:
        overrides = {
            key: self.options[key]
            for key in OVERRIDABLE_PARAMETERS
            if self.options.get(key) is not None
        }
        if not overrides:
            return TransformedRequest(body)

        logger.bind(request_id=context.request_id or "---").debug(
            f"应用参数覆盖 ({provider.name}): {overrides}"
        )
        return TransformedRequest({**body, **overrides})
