"""Test helpers: config builders, upstream payloads and a recording transport."""

import json
from collections.abc import Callable
from typing import Any

import httpx

from llms.config.settings import Config


def make_config(**overrides: Any) -> Config:
    data: dict[str, Any] = {
        "logging": {"level": "DEBUG", "file": None},
        "router": {"default": "openrouter,anthropic/claude-3.5-sonnet"},
        "providers": [],
    }
    data.update(overrides)
    return Config.model_validate(data)


def chat_completion(content: str = "Hello!", model: str = "test-model", **extra: Any) -> dict:
    message = {"role": "assistant", "content": content, **extra}
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "model": model,
        "choices": [{"index": 0, "message": message, "finish_reason": "stop"}],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def sse_body(chunks: list[dict]) -> bytes:
    lines = [f"data: {json.dumps(chunk)}\n\n" for chunk in chunks]
    lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


class UpstreamRecorder:
    """httpx.MockTransport handler that records every outbound request."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response] | None = None):
        self.requests: list[httpx.Request] = []
        self.responder = responder or (lambda request: httpx.Response(200, json=chat_completion()))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.last.content)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)
