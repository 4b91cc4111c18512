"""
Anthropic 请求转换器

将 Anthropic Messages 格式的请求转换为统一（OpenAI 风格）格式。
"""

import json
from typing import Any

from loguru import logger

from llms.models.anthropic import (
    AnthropicMessage,
    AnthropicMessageContent,
    AnthropicRequest,
    AnthropicSystemMessage,
    AnthropicToolDefinition,
)
from llms.models.unified import (
    ReasoningConfig,
    UnifiedChatRequest,
    UnifiedMessage,
    UnifiedTool,
)


class AnthropicToUnifiedConverter:
    """将Anthropic请求转换为统一格式"""

    @staticmethod
    def convert(anthropic_request: AnthropicRequest) -> UnifiedChatRequest:
        """
        将Anthropic请求转换为统一格式请求

        Args:
            anthropic_request: Anthropic格式的请求

        Returns:
            统一格式的请求
        """
        messages = AnthropicToUnifiedConverter._convert_messages(anthropic_request)

        return UnifiedChatRequest(
            model=anthropic_request.model,
            messages=messages,
            max_tokens=anthropic_request.max_tokens,
            temperature=anthropic_request.temperature,
            top_p=anthropic_request.top_p,
            top_k=anthropic_request.top_k,
            stop=anthropic_request.stop_sequences,
            stream=bool(anthropic_request.stream),
            tools=AnthropicToUnifiedConverter._convert_tools(anthropic_request.tools),
            tool_choice=AnthropicToUnifiedConverter._convert_tool_choice(
                anthropic_request.tool_choice
            ),
            reasoning=AnthropicToUnifiedConverter._convert_thinking(
                anthropic_request.thinking
            ),
        )

    @staticmethod
    def _convert_messages(anthropic_request: AnthropicRequest) -> list[UnifiedMessage]:
        messages = []

        if anthropic_request.system:
            messages.extend(
                AnthropicToUnifiedConverter._convert_system_message(
                    anthropic_request.system
                )
            )

        for anthropic_msg in anthropic_request.messages:
            messages.extend(AnthropicToUnifiedConverter._convert_single_message(anthropic_msg))

        return AnthropicToUnifiedConverter._filter_incomplete_tool_calls(messages)

    @staticmethod
    def _convert_system_message(
        system: str | list[AnthropicSystemMessage],
    ) -> list[UnifiedMessage]:
        if isinstance(system, str):
            return [UnifiedMessage(role="system", content=system)]
        return [
            UnifiedMessage(
                role="system",
                content=[
                    {"type": "text", "text": item.text, "cache_control": item.cache_control}
                    for item in system
                ],
            )
        ]

    @staticmethod
    def _convert_single_message(anthropic_msg: AnthropicMessage) -> list[UnifiedMessage]:
        """
        转换单个Anthropic消息

        tool_result 内容块会被拆分为独立的 tool 消息，放在主消息之后。
        """
        if isinstance(anthropic_msg.content, str):
            return [UnifiedMessage(role=anthropic_msg.role, content=anthropic_msg.content)]

        content_parts: list[dict[str, Any]] = []
        tool_calls: list[dict[str, Any]] = []
        tool_messages: list[UnifiedMessage] = []
        thinking = None

        for block in anthropic_msg.content:
            if block.type == "text":
                content_parts.append(
                    {"type": "text", "text": block.text or "", "cache_control": block.cache_control}
                )
            elif block.type == "image" and block.source:
                content_parts.append(AnthropicToUnifiedConverter._convert_image(block))
            elif block.type == "tool_use":
                tool_calls.append(
                    {
                        "id": block.id or "",
                        "type": "function",
                        "function": {
                            "name": block.name or "",
                            "arguments": json.dumps(block.input or {}, ensure_ascii=False),
                        },
                    }
                )
            elif block.type == "tool_result":
                result = block.content if block.content is not None else ""
                if isinstance(result, list):
                    result = json.dumps(result, ensure_ascii=False)
                tool_messages.append(
                    UnifiedMessage(
                        role="tool", content=result, tool_call_id=block.tool_use_id
                    )
                )
            elif block.type == "thinking" and block.thinking:
                thinking = {"content": block.thinking, "signature": block.signature}

        messages = []
        if content_parts or tool_calls or thinking:
            content: str | list[dict[str, Any]] | None = content_parts or None
            # 单个纯文本块简化为字符串
            if (
                len(content_parts) == 1
                and content_parts[0]["type"] == "text"
                and not content_parts[0].get("cache_control")
            ):
                content = content_parts[0]["text"]
            messages.append(
                UnifiedMessage(
                    role=anthropic_msg.role,
                    content=content,
                    tool_calls=tool_calls or None,
                    thinking=thinking,
                )
            )
        messages.extend(tool_messages)
        return messages

    @staticmethod
    def _convert_image(block: AnthropicMessageContent) -> dict[str, Any]:
        source = block.source or {}
        if source.get("type") == "base64":
            media_type = source.get("media_type", "image/png")
            url = f"data:{media_type};base64,{source.get('data', '')}"
        else:
            media_type = source.get("media_type")
            url = source.get("url", "")
        return {"type": "image_url", "image_url": {"url": url}, "media_type": media_type}

    @staticmethod
    def _convert_tools(
        anthropic_tools: list[AnthropicToolDefinition] | None,
    ) -> list[UnifiedTool] | None:
        if not anthropic_tools:
            return None

        return [
            UnifiedTool(
                function={
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": tool.input_schema
                    or {"type": "object", "properties": {}},
                }
            )
            for tool in anthropic_tools
        ]

    @staticmethod
    def _convert_tool_choice(
        tool_choice: str | dict[str, Any] | None,
    ) -> str | dict[str, Any] | None:
        """Anthropic 的 any 对应 OpenAI 的 required，tool 对应指定函数"""
        if tool_choice is None:
            return None

        choice_type = tool_choice if isinstance(tool_choice, str) else tool_choice.get("type")
        if choice_type == "any":
            return "required"
        if choice_type in ("auto", "none"):
            return choice_type
        if choice_type == "tool" and isinstance(tool_choice, dict) and tool_choice.get("name"):
            return {"type": "function", "function": {"name": tool_choice["name"]}}
        return tool_choice

    @staticmethod
    def _convert_thinking(thinking: dict[str, Any] | None) -> ReasoningConfig | None:
        if not thinking:
            return None
        if thinking.get("type") == "enabled":
            return ReasoningConfig(enabled=True, max_tokens=thinking.get("budget_tokens"))
        return ReasoningConfig(enabled=False)

    @staticmethod
    def _filter_incomplete_tool_calls(messages: list[UnifiedMessage]) -> list[UnifiedMessage]:
        """过滤不完整的tool_calls序列

        OpenAI 要求带 tool_calls 的 assistant 消息后必须紧跟所有对应的 tool 消息；
        不完整的序列以及孤立的 tool 消息都会被移除。
        """
        filtered: list[UnifiedMessage] = []
        i = 0
        while i < len(messages):
            current = messages[i]

            if current.role == "assistant" and current.tool_calls:
                expected = {call.id for call in current.tool_calls}
                j = i + 1
                while j < len(messages) and messages[j].role == "tool":
                    j += 1
                followers = messages[i + 1 : j]
                found = {msg.tool_call_id for msg in followers}

                if expected <= found:
                    filtered.append(current)
                    filtered.extend(msg for msg in followers if msg.tool_call_id in expected)
                else:
                    logger.debug(
                        f"过滤不完整的tool_calls序列: 期望{len(expected)}个tool消息，"
                        f"实际找到{len(expected & found)}个"
                    )
                    # 保留 assistant 的文本部分
                    if current.content:
                        filtered.append(current.model_copy(update={"tool_calls": None}))
                i = j
            elif current.role == "tool":
                logger.debug(f"过滤没有对应assistant消息的独立tool消息: {current.tool_call_id}")
                i += 1
            else:
                filtered.append(current)
                i += 1

        return filtered
