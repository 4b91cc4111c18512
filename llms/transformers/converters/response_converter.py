"""
统一格式到 Anthropic 的响应转换器

将 OpenAI 风格的 chat.completion 响应转换为 Anthropic Messages 响应。
"""

import json
from typing import Any

from loguru import logger

from llms.models.anthropic import (
    STOP_REASON_MAPPING,
    AnthropicContentBlock,
    AnthropicContentTypes,
    AnthropicMessageResponse,
    AnthropicUsage,
)
from llms.models.unified import UnifiedChatResponse


def safe_json_parse(text: str | None) -> dict[str, Any]:
    """解析工具参数，失败时返回空字典"""
    if not text:
        return {}
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        logger.warning(f"工具参数JSON解析失败: {text[:200]}")
        return {}
    return parsed if isinstance(parsed, dict) else {}


def split_think_tags(content: str) -> tuple[str | None, str]:
    """拆分 <think>...</think> 包裹的推理内容

    Returns:
        (推理内容, 剩余文本)，没有推理标签时推理内容为 None
    """
    for open_tag, close_tag in (("<think>", "</think>"), ("<thinking>", "</thinking>")):
        start = content.find(open_tag)
        end = content.find(close_tag)
        if start != -1 and end > start:
            thinking = content[start + len(open_tag) : end].strip()
            rest = (content[:start] + content[end + len(close_tag) :]).strip()
            return thinking, rest
    return None, content


class UnifiedToAnthropicConverter:
    """统一格式响应到Anthropic格式的转换器"""

    @staticmethod
    def convert_response(
        data: dict[str, Any], original_model: str | None = None
    ) -> AnthropicMessageResponse:
        """
        将非流式响应转换为Anthropic格式

        Args:
            data: chat.completion 响应字典
            original_model: 客户端请求时使用的模型名

        Returns:
            转换后的Anthropic格式响应

        Raises:
            ValueError: 响应没有有效的choices
        """
        unified = UnifiedChatResponse.from_chat_completion(data)
        content_blocks = UnifiedToAnthropicConverter._extract_content_blocks(unified)

        usage = AnthropicUsage()
        if unified.usage:
            usage = AnthropicUsage(
                input_tokens=unified.usage.prompt_tokens,
                output_tokens=unified.usage.completion_tokens,
            )

        return AnthropicMessageResponse(
            id=unified.id or "",
            content=content_blocks,
            model=original_model or unified.model,
            stop_reason=STOP_REASON_MAPPING.get(unified.finish_reason or "", "end_turn"),
            usage=usage,
        )

    @staticmethod
    def _extract_content_blocks(unified: UnifiedChatResponse) -> list[AnthropicContentBlock]:
        blocks = []
        text = unified.content or ""
        thinking = unified.reasoning_content

        if not thinking and text:
            thinking, text = split_think_tags(text)

        if thinking:
            blocks.append(
                AnthropicContentBlock(type=AnthropicContentTypes.THINKING, thinking=thinking)
            )

        if text:
            blocks.append(AnthropicContentBlock(type=AnthropicContentTypes.TEXT, text=text))

        for call in unified.tool_calls or []:
            blocks.append(
                AnthropicContentBlock(
                    type=AnthropicContentTypes.TOOL_USE,
                    id=call.id,
                    name=call.function.name,
                    input=safe_json_parse(call.function.arguments),
                )
            )

        if not blocks:
            blocks.append(AnthropicContentBlock(type=AnthropicContentTypes.TEXT, text=""))
        return blocks
