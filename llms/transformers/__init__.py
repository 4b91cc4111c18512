"""内置转换器"""

from .anthropic import AnthropicTransformer
from .openai import OpenAITransformer
from .overrides import ParameterOverridesTransformer
from .reasoning import ReasoningTransformer

BUILTIN_TRANSFORMERS = [
    AnthropicTransformer,
    OpenAITransformer,
    ParameterOverridesTransformer,
    ReasoningTransformer,
]

__all__ = [
    "BUILTIN_TRANSFORMERS",
    "AnthropicTransformer",
    "OpenAITransformer",
    "ParameterOverridesTransformer",
    "ReasoningTransformer",
]
