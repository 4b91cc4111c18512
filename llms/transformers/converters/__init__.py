"""Anthropic 与统一格式之间的转换器"""

from .request_converter import AnthropicToUnifiedConverter
from .response_converter import UnifiedToAnthropicConverter
from .stream_converter import AnthropicStreamConverter, convert_openai_stream

__all__ = [
    "AnthropicToUnifiedConverter",
    "UnifiedToAnthropicConverter",
    "AnthropicStreamConverter",
    "convert_openai_stream",
]
