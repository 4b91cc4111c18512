"""转换器基础接口

转换器是整个网关的核心扩展点，负责在不同的 API 格式之间进行转换。
每个转换器通过 capabilities 显式声明自己实现了哪些能力，管道只会
调用声明过的能力，未声明的能力视为空操作。
"""

import codecs
import json
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

if TYPE_CHECKING:
    from llms.models.provider import ProviderDescriptor


class Capability(str, Enum):
    """转换器能力"""

    # 客户端原始请求 -> 统一格式
    REQUEST_OUT = "request_out"
    # 统一格式 -> 提供商格式（链成员）
    REQUEST_IN = "request_in"
    # 提供商响应 -> 客户端响应（端点转换器）
    RESPONSE_IN = "response_in"
    # 提供商响应 -> 统一格式响应（链成员）
    RESPONSE_OUT = "response_out"
    # 注入认证信息
    AUTH = "auth"


class TransformerContext(dict):
    """单个请求内的临时键值空间，在整个管道中原样传递"""

    def __init__(self, request_id: str | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.request_id = request_id


@dataclass
class TransformedRequest:
    """请求阶段的产物：请求体以及需要合并的出站配置片段"""

    body: dict[str, Any]
    config: dict[str, Any] = field(default_factory=dict)


class ProviderResponse:
    """上游（或转换后）的响应

    既可以是流式的字节迭代器，也可以是已经缓冲好的字节内容。
    转换器通过 from_json / from_stream 构造新的响应对象来替换旧响应。
    """

    def __init__(
        self,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        *,
        content: bytes | None = None,
        stream: AsyncIterator[bytes] | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ):
        self.status_code = status_code
        self.headers = dict(headers or {})
        self._content = content
        self._stream = stream
        self._on_close = on_close
        self._closed = False

    @classmethod
    def from_json(
        cls, data: Any, status_code: int = 200, headers: dict[str, str] | None = None
    ) -> "ProviderResponse":
        merged = {**(headers or {}), "content-type": "application/json"}
        content = json.dumps(data, ensure_ascii=False).encode("utf-8")
        return cls(status_code, merged, content=content)

    @classmethod
    def from_stream(
        cls,
        stream: AsyncIterator[bytes],
        status_code: int = 200,
        headers: dict[str, str] | None = None,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> "ProviderResponse":
        return cls(status_code, headers, stream=stream, on_close=on_close)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def is_stream(self) -> bool:
        return self._stream is not None

    def with_stream(self, stream: AsyncIterator[bytes]) -> "ProviderResponse":
        """用新的字节流替换当前响应体，关闭新响应时会一并关闭当前响应"""
        return ProviderResponse.from_stream(
            stream, self.status_code, self.headers, on_close=self.aclose
        )

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        try:
            if self._stream is not None:
                async for chunk in self._stream:
                    yield chunk
            elif self._content:
                yield self._content
        finally:
            await self.aclose()

    async def aiter_lines(self) -> AsyncIterator[str]:
        """按行迭代响应体（SSE 解析用），不包含换行符"""
        # 多字节字符可能被拆分到相邻的块中
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        buffer = ""
        async for chunk in self.aiter_bytes():
            buffer += decoder.decode(chunk)
            lines = buffer.split("\n")
            buffer = lines.pop()
            for line in lines:
                yield line.rstrip("\r")
        buffer += decoder.decode(b"", final=True)
        if buffer:
            yield buffer.rstrip("\r")

    async def aread(self) -> bytes:
        if self._content is None:
            self._content = b"".join([chunk async for chunk in self.aiter_bytes()])
            self._stream = None
        return self._content

    async def json(self) -> Any:
        return json.loads(await self.aread())

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._on_close is not None:
            await self._on_close()


class Transformer:
    """转换器基类

    子类通过 capabilities 声明实现的能力，并覆盖对应的方法。
    带 end_point 的转换器会被注册为 HTTP 路由。
    """

    name: ClassVar[str] = ""
    end_point: ClassVar[str | None] = None
    capabilities: ClassVar[frozenset[Capability]] = frozenset()

    def __init__(self, options: dict[str, Any] | None = None):
        self.options = dict(options or {})

    def supports(self, capability: Capability) -> bool:
        return capability in self.capabilities

    async def request_out(
        self, body: dict[str, Any], context: TransformerContext
    ) -> TransformedRequest:
        return TransformedRequest(body)

    async def request_in(
        self,
        body: dict[str, Any],
        provider: "ProviderDescriptor",
        context: TransformerContext,
    ) -> TransformedRequest:
        return TransformedRequest(body)

    async def response_in(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        return response

    async def response_out(
        self, response: ProviderResponse, context: TransformerContext
    ) -> ProviderResponse:
        return response

    async def auth(
        self,
        body: dict[str, Any],
        provider: "ProviderDescriptor",
        context: TransformerContext,
    ) -> TransformedRequest:
        return TransformedRequest(body)

    def __repr__(self) -> str:
        return f"<{type(self).__name__} name={self.name!r}>"


TransformerFactory = Callable[[dict[str, Any] | None], Transformer]


def is_event_stream(response: ProviderResponse, context: TransformerContext) -> bool:
    """判断响应是否为 SSE 流"""
    content_type = ""
    for key, value in response.headers.items():
        if key.lower() == "content-type":
            content_type = value
    return "text/event-stream" in content_type or bool(context.get("stream"))


@dataclass
class ProviderTransformers:
    """提供商解析后的转换器链

    use 为提供商级别的链，models 为按模型名覆盖的链，均按注册顺序保存。
    """

    use: list[Transformer] = field(default_factory=list)
    models: dict[str, list[Transformer]] = field(default_factory=dict)

    def for_model(self, model: str | None) -> list[Transformer]:
        if not model:
            return []
        return self.models.get(model, [])
