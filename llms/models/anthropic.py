"""Anthropic Messages API 数据模型定义"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class AnthropicStreamEventTypes:
    """Anthropic流式响应事件类型常量"""

    MESSAGE_START = "message_start"
    MESSAGE_DELTA = "message_delta"
    MESSAGE_STOP = "message_stop"
    CONTENT_BLOCK_START = "content_block_start"
    CONTENT_BLOCK_DELTA = "content_block_delta"
    CONTENT_BLOCK_STOP = "content_block_stop"
    PING = "ping"
    ERROR = "error"


class AnthropicContentTypes:
    """Anthropic内容类型常量"""

    TEXT = "text"
    IMAGE = "image"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    THINKING = "thinking"

    TEXT_DELTA = "text_delta"
    INPUT_JSON_DELTA = "input_json_delta"
    THINKING_DELTA = "thinking_delta"
    SIGNATURE_DELTA = "signature_delta"


# OpenAI finish_reason -> Anthropic stop_reason
STOP_REASON_MAPPING = {
    "stop": "end_turn",
    "length": "max_tokens",
    "content_filter": "stop_sequence",
    "tool_calls": "tool_use",
    "function_call": "tool_use",
}


class AnthropicMessageContent(BaseModel):
    """Anthropic消息内容块"""

    type: Literal["text", "thinking", "image", "tool_use", "tool_result"] = Field(
        description="内容类型"
    )
    text: str | None = Field(None, description="文本内容")
    thinking: str | None = Field(None, description="思考内容")
    signature: str | None = Field(None, description="思考签名")
    source: dict[str, Any] | None = Field(None, description="图片源信息")
    id: str | None = Field(None, description="工具调用ID")
    name: str | None = Field(None, description="工具名称")
    input: dict[str, Any] | None = Field(None, description="工具输入参数")
    tool_use_id: str | None = Field(None, description="工具结果对应的调用ID")
    content: str | list[dict[str, Any]] | None = Field(None, description="工具结果内容")
    is_error: bool | None = Field(None, description="工具结果是否为错误")
    cache_control: dict[str, Any] | None = Field(None, description="缓存控制")


class AnthropicMessage(BaseModel):
    """Anthropic消息格式"""

    role: Literal["user", "assistant"] = Field(description="消息角色")
    content: str | list[AnthropicMessageContent] = Field(description="消息内容")


class AnthropicSystemMessage(BaseModel):
    """Anthropic系统消息"""

    type: Literal["text"] = Field(AnthropicContentTypes.TEXT, description="固定为text")
    text: str = Field(description="系统消息文本内容")
    cache_control: dict[str, Any] | None = Field(None, description="缓存控制")


class AnthropicToolDefinition(BaseModel):
    """Anthropic工具定义"""

    name: str = Field(description="工具名称")
    description: str | None = Field(None, description="工具描述")
    input_schema: dict[str, Any] | None = Field(None, description="输入参数JSON Schema")
    type: str | None = Field(None, description="服务端工具类型")


class AnthropicRequest(BaseModel):
    """Anthropic API请求模型"""

    model: str = Field(description="模型ID")
    messages: list[AnthropicMessage] = Field(description="对话消息列表")
    max_tokens: int = Field(description="最大输出token数量")
    system: str | list[AnthropicSystemMessage] | None = Field(None, description="系统提示")
    tools: list[AnthropicToolDefinition] | None = Field(None, description="工具定义")
    tool_choice: str | dict[str, Any] | None = Field(None, description="工具选择配置")
    metadata: dict[str, Any] | None = Field(None, description="可选元数据")
    stop_sequences: list[str] | None = Field(None, description="停止序列")
    stream: bool | None = Field(False, description="是否使用流式响应")
    temperature: float | None = Field(None, ge=0.0, le=1.0, description="采样温度")
    top_p: float | None = Field(None, ge=0.0, le=1.0, description="top-p采样参数")
    top_k: int | None = Field(None, ge=1, description="top-k采样参数")
    thinking: dict[str, Any] | None = Field(None, description="推理配置")


class AnthropicContentBlock(BaseModel):
    """响应中的内容块"""

    type: Literal["text", "tool_use", "thinking"]
    text: str | None = None
    id: str | None = None
    name: str | None = None
    input: dict[str, Any] | None = None
    thinking: str | None = None
    signature: str | None = None


class AnthropicUsage(BaseModel):
    """Anthropic使用统计"""

    input_tokens: int = Field(0, description="输入token数量")
    output_tokens: int = Field(0, description="输出token数量")


class AnthropicMessageResponse(BaseModel):
    """Anthropic消息响应"""

    id: str = Field(description="响应唯一ID")
    type: Literal["message"] = "message"
    role: Literal["assistant"] = "assistant"
    content: list[AnthropicContentBlock] = Field(description="消息内容块")
    model: str = Field(description="模型ID")
    stop_reason: str | None = Field(None, description="停止原因")
    stop_sequence: str | None = Field(None, description="停止序列")
    usage: AnthropicUsage = Field(default_factory=AnthropicUsage)
