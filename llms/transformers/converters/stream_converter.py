"""
流式响应转换

把 OpenAI 风格的 chat.completion.chunk SSE 流转换为 Anthropic 的流式事件序列：
message_start -> (content_block_start -> content_block_delta* -> content_block_stop)*
-> message_delta -> message_stop
"""

import json
import time
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from llms.models.anthropic import (
    STOP_REASON_MAPPING,
    AnthropicContentTypes,
    AnthropicStreamEventTypes,
)


def format_event(event_type: str, data: dict[str, Any]) -> str:
    """格式化事件为 SSE 格式"""
    return f"event: {event_type}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


class StreamState:
    """流状态管理类"""

    def __init__(self, model: str):
        self.message_id = f"msg_{int(time.time() * 1000)}"
        self.model = model
        self.has_started = False
        self.has_finished = False
        # 当前打开的内容块：None / "text" / "thinking" / ("tool", index)
        self.current_block: Any = None
        self.content_index = -1
        # <think> 标签模式
        self.in_think_tag = False
        self.tool_calls: dict[int, dict[str, Any]] = {}
        self.input_tokens = 0
        self.output_tokens = 0
        self.stop_reason: str | None = None
        self.total_chunks = 0


class AnthropicStreamConverter:
    """OpenAI 流式块 -> Anthropic 流式事件"""

    def __init__(self, model: str, request_id: str | None = None):
        self.state = StreamState(model)
        self.request_id = request_id

    def start(self) -> list[str]:
        if self.state.has_started:
            return []
        self.state.has_started = True
        message = {
            "type": AnthropicStreamEventTypes.MESSAGE_START,
            "message": {
                "id": self.state.message_id,
                "type": "message",
                "role": "assistant",
                "model": self.state.model,
                "content": [],
                "stop_reason": None,
                "stop_sequence": None,
                "usage": {"input_tokens": 0, "output_tokens": 0},
            },
        }
        return [
            format_event(AnthropicStreamEventTypes.MESSAGE_START, message),
            format_event(AnthropicStreamEventTypes.PING, {"type": "ping"}),
        ]

    def process_chunk(self, chunk: dict[str, Any]) -> list[str]:
        """处理一个 chat.completion.chunk"""
        state = self.state
        events = self.start()
        state.total_chunks += 1

        usage = chunk.get("usage")
        if usage:
            state.input_tokens = usage.get("prompt_tokens") or state.input_tokens
            state.output_tokens = usage.get("completion_tokens") or state.output_tokens

        choices = chunk.get("choices") or []
        if not choices:
            return events
        choice = choices[0]
        delta = choice.get("delta") or {}

        reasoning = delta.get("reasoning_content") or delta.get("reasoning")
        if reasoning:
            events.extend(self._emit_thinking(reasoning))

        content = delta.get("content")
        if content:
            events.extend(self._process_content(content))

        if delta.get("tool_calls"):
            events.extend(self._process_tool_calls(delta["tool_calls"]))

        if choice.get("finish_reason"):
            state.stop_reason = STOP_REASON_MAPPING.get(choice["finish_reason"], "end_turn")
        return events

    def finish(self) -> list[str]:
        """结束流：关闭打开的内容块并发送 message_delta / message_stop"""
        state = self.state
        if state.has_finished:
            return []
        events = self.start()
        events.extend(self._close_block())
        state.has_finished = True

        events.append(
            format_event(
                AnthropicStreamEventTypes.MESSAGE_DELTA,
                {
                    "type": AnthropicStreamEventTypes.MESSAGE_DELTA,
                    "delta": {
                        "stop_reason": state.stop_reason or "end_turn",
                        "stop_sequence": None,
                    },
                    "usage": {
                        "input_tokens": state.input_tokens,
                        "output_tokens": state.output_tokens,
                    },
                },
            )
        )
        events.append(
            format_event(
                AnthropicStreamEventTypes.MESSAGE_STOP,
                {"type": AnthropicStreamEventTypes.MESSAGE_STOP},
            )
        )
        logger.bind(request_id=self.request_id or "---").debug(
            f"流式转换完成: chunks={state.total_chunks}, "
            f"stop_reason={state.stop_reason}, output_tokens={state.output_tokens}"
        )
        return events

    def error(self, message: str) -> list[str]:
        return [
            format_event(
                AnthropicStreamEventTypes.ERROR,
                {"type": "error", "error": {"type": "api_error", "message": message}},
            )
        ]

    def _process_content(self, content: str) -> list[str]:
        events = []
        # 兼容以 <think> 标签内联输出推理内容的模型
        if not self.state.in_think_tag and content.lstrip().startswith(("<think>", "<thinking>")):
            self.state.in_think_tag = True
            content = content.replace("<thinking>", "").replace("<think>", "")

        if self.state.in_think_tag:
            for close_tag in ("</thinking>", "</think>"):
                if close_tag in content:
                    thinking, _, rest = content.partition(close_tag)
                    self.state.in_think_tag = False
                    if thinking:
                        events.extend(self._emit_thinking(thinking))
                    if rest.strip():
                        events.extend(self._emit_text(rest.lstrip()))
                    return events
            if content:
                events.extend(self._emit_thinking(content))
            return events

        return self._emit_text(content)

    def _emit_text(self, text: str) -> list[str]:
        events = self._open_block("text", {"type": AnthropicContentTypes.TEXT, "text": ""})
        events.append(
            self._delta_event({"type": AnthropicContentTypes.TEXT_DELTA, "text": text})
        )
        return events

    def _emit_thinking(self, thinking: str) -> list[str]:
        events = self._open_block(
            "thinking", {"type": AnthropicContentTypes.THINKING, "thinking": ""}
        )
        events.append(
            self._delta_event(
                {"type": AnthropicContentTypes.THINKING_DELTA, "thinking": thinking}
            )
        )
        return events

    def _process_tool_calls(self, tool_calls: list[dict[str, Any]]) -> list[str]:
        events = []
        for tool_call in tool_calls:
            index = tool_call.get("index", 0)
            function = tool_call.get("function") or {}

            if index not in self.state.tool_calls:
                call_id = tool_call.get("id") or f"call_{int(time.time() * 1000)}_{index}"
                name = function.get("name") or f"tool_{index}"
                self.state.tool_calls[index] = {"id": call_id, "name": name, "arguments": ""}
                events.extend(
                    self._open_block(
                        ("tool", index),
                        {
                            "type": AnthropicContentTypes.TOOL_USE,
                            "id": call_id,
                            "name": name,
                            "input": {},
                        },
                    )
                )

            arguments = function.get("arguments")
            if arguments:
                self.state.tool_calls[index]["arguments"] += arguments
                if self.state.current_block != ("tool", index):
                    logger.warning(f"工具调用参数交错到达，忽略: index={index}")
                    continue
                events.append(
                    self._delta_event(
                        {
                            "type": AnthropicContentTypes.INPUT_JSON_DELTA,
                            "partial_json": arguments,
                        }
                    )
                )
        return events

    def _open_block(self, kind: Any, content_block: dict[str, Any]) -> list[str]:
        if self.state.current_block == kind:
            return []
        events = self._close_block()
        self.state.current_block = kind
        self.state.content_index += 1
        events.append(
            format_event(
                AnthropicStreamEventTypes.CONTENT_BLOCK_START,
                {
                    "type": AnthropicStreamEventTypes.CONTENT_BLOCK_START,
                    "index": self.state.content_index,
                    "content_block": content_block,
                },
            )
        )
        return events

    def _close_block(self) -> list[str]:
        if self.state.current_block is None:
            return []
        events = []
        if self.state.current_block == "thinking":
            events.append(
                self._delta_event(
                    {
                        "type": AnthropicContentTypes.SIGNATURE_DELTA,
                        "signature": f"{int(time.time() * 1000)}",
                    }
                )
            )
        events.append(
            format_event(
                AnthropicStreamEventTypes.CONTENT_BLOCK_STOP,
                {
                    "type": AnthropicStreamEventTypes.CONTENT_BLOCK_STOP,
                    "index": self.state.content_index,
                },
            )
        )
        self.state.current_block = None
        return events

    def _delta_event(self, delta: dict[str, Any]) -> str:
        return format_event(
            AnthropicStreamEventTypes.CONTENT_BLOCK_DELTA,
            {
                "type": AnthropicStreamEventTypes.CONTENT_BLOCK_DELTA,
                "index": self.state.content_index,
                "delta": delta,
            },
        )


async def convert_openai_stream(
    lines: AsyncIterator[str], model: str, request_id: str | None = None
) -> AsyncIterator[bytes]:
    """
    将 OpenAI SSE 行流转换为 Anthropic SSE 字节流

    Args:
        lines: 上游响应的文本行
        model: 返回给客户端的模型名
        request_id: 请求ID，用于日志绑定
    """
    converter = AnthropicStreamConverter(model, request_id)
    bound_logger = logger.bind(request_id=request_id or "---")

    for event in converter.start():
        yield event.encode("utf-8")

    async for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        payload = line[5:].strip()
        if payload == "[DONE]":
            break
        try:
            chunk = json.loads(payload)
        except json.JSONDecodeError:
            bound_logger.warning(f"无法解析的流式数据块: {payload[:200]}")
            continue

        if isinstance(chunk, dict) and chunk.get("error"):
            error = chunk["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            for event in converter.error(message or "Upstream error"):
                yield event.encode("utf-8")
            continue

        for event in converter.process_chunk(chunk):
            yield event.encode("utf-8")

    for event in converter.finish():
        yield event.encode("utf-8")
