"""统一（与提供商无关）的聊天请求/响应数据模型

结构与 OpenAI Chat Completions 保持一致，所有转换器在与管道交互时
都使用这一格式。未声明的字段在校验时会被丢弃。
"""

from typing import Any, Literal

from pydantic import BaseModel, Field


class TextContent(BaseModel):
    """文本内容"""

    type: Literal["text"] = "text"
    text: str = Field(description="文本内容")
    cache_control: dict[str, Any] | None = Field(None, description="缓存控制")


class ImageContent(BaseModel):
    """图片内容"""

    type: Literal["image_url"] = "image_url"
    image_url: dict[str, str] = Field(description="图片URL，支持base64 data URL")
    media_type: str | None = Field(None, description="媒体类型，如image/jpeg")


MessageContent = TextContent | ImageContent


class FunctionCall(BaseModel):
    """工具调用的函数部分"""

    name: str = Field(description="函数名称")
    arguments: str = Field("", description="JSON格式的函数参数")


class ToolCall(BaseModel):
    """工具调用"""

    id: str = Field(description="工具调用ID")
    type: Literal["function"] = "function"
    function: FunctionCall = Field(description="函数详情")


class ThinkingBlock(BaseModel):
    """推理内容"""

    content: str = Field(description="推理文本")
    signature: str | None = Field(None, description="推理签名")


class UnifiedMessage(BaseModel):
    """统一消息格式"""

    role: Literal["system", "user", "assistant", "tool"] = Field(description="消息角色")
    content: str | list[MessageContent] | None = Field(None, description="消息内容")
    tool_calls: list[ToolCall] | None = Field(None, description="工具调用列表")
    tool_call_id: str | None = Field(None, description="工具响应关联的调用ID")
    cache_control: dict[str, Any] | None = Field(None, description="缓存控制")
    thinking: ThinkingBlock | None = Field(None, description="推理内容")


class FunctionDefinition(BaseModel):
    """工具函数定义"""

    name: str = Field(description="函数名称")
    description: str | None = Field(None, description="函数描述")
    parameters: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON Schema格式的参数定义",
    )


class UnifiedTool(BaseModel):
    """统一工具定义"""

    type: Literal["function"] = "function"
    function: FunctionDefinition = Field(description="函数定义")


class ReasoningConfig(BaseModel):
    """推理控制参数，同时兼容OpenAI和Anthropic风格"""

    effort: Literal["none", "low", "medium", "high"] | None = Field(
        None, description="推理强度（OpenAI风格）"
    )
    max_tokens: int | None = Field(None, description="推理最大token数（Anthropic风格）")
    enabled: bool | None = Field(None, description="是否启用推理")


class UnifiedChatRequest(BaseModel):
    """统一聊天请求"""

    model: str = Field(description="模型名称")
    messages: list[UnifiedMessage] = Field(description="消息列表")
    max_tokens: int | None = Field(None, description="最大生成token数")
    temperature: float | None = Field(None, description="采样温度")
    top_p: float | None = Field(None, description="top-p采样参数")
    top_k: int | None = Field(None, description="top-k采样参数")
    stop: str | list[str] | None = Field(None, description="停止序列")
    stream: bool | None = Field(False, description="是否流式返回")
    tools: list[UnifiedTool] | None = Field(None, description="可用工具列表")
    tool_choice: str | dict[str, Any] | None = Field(None, description="工具选择")
    reasoning: ReasoningConfig | None = Field(None, description="推理控制")

    def to_payload(self) -> dict[str, Any]:
        """序列化为发往上游的JSON字典"""
        return self.model_dump(exclude_none=True)


class UnifiedUsage(BaseModel):
    """使用统计"""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class UnifiedChatResponse(BaseModel):
    """统一聊天响应（非流式）"""

    id: str = Field(description="响应ID")
    model: str = Field(description="模型ID")
    content: str | None = Field(None, description="文本内容")
    reasoning_content: str | None = Field(None, description="推理内容")
    tool_calls: list[ToolCall] | None = Field(None, description="工具调用")
    finish_reason: str | None = Field(None, description="完成原因")
    usage: UnifiedUsage | None = Field(None, description="使用统计")
    annotations: list[dict[str, Any]] | None = Field(None, description="注解")

    @classmethod
    def from_chat_completion(cls, data: dict[str, Any]) -> "UnifiedChatResponse":
        """从OpenAI风格的chat.completion响应中提取统一响应

        Raises:
            ValueError: 响应中没有任何choice
        """
        choices = data.get("choices") or []
        if not choices:
            raise ValueError("Provider response has no choices")

        choice = choices[0]
        message = choice.get("message") or {}
        return cls(
            id=data.get("id", ""),
            model=data.get("model", ""),
            content=message.get("content"),
            reasoning_content=message.get("reasoning_content"),
            tool_calls=message.get("tool_calls") or None,
            finish_reason=choice.get("finish_reason"),
            usage=data.get("usage"),
            annotations=message.get("annotations"),
        )
