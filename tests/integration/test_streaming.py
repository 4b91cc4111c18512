"""Streaming response tests for end-to-end testing."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from llms.main import create_app
from tests.helpers import UpstreamRecorder, make_config, sse_body

STREAM_CHUNKS = [
    {"choices": [{"index": 0, "delta": {"role": "assistant", "content": "Hello"}}]},
    {"choices": [{"index": 0, "delta": {"content": " world"}, "finish_reason": "stop"}]},
    {"choices": [], "usage": {"prompt_tokens": 4, "completion_tokens": 2}},
]


def sse_response(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200, content=sse_body(STREAM_CHUNKS), headers={"content-type": "text/event-stream"}
    )


def read_events(response) -> list[tuple[str, dict]]:
    events = []
    event_type = None
    for line in response.iter_lines():
        if line.startswith("event: "):
            event_type = line[7:]
        elif line.startswith("data: ") and line != "data: [DONE]":
            events.append((event_type, json.loads(line[6:])))
    return events


class TestStreamingIntegration:
    """Tests for streaming response handling."""

    def test_messages_stream_is_converted(self, client, upstream):
        upstream.responder = sse_response
        payload = {
            "model": "sonnet",
            "max_tokens": 100,
            "stream": True,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        with client.stream("POST", "/v1/messages", json=payload) as response:
            assert response.status_code == 200
            assert response.headers["content-type"] == "text/event-stream"
            assert response.headers["cache-control"] == "no-cache"
            events = read_events(response)

        assert upstream.last_json["stream"] is True
        assert [name for name, _ in events] == [
            "message_start",
            "ping",
            "content_block_start",
            "content_block_delta",
            "content_block_delta",
            "content_block_stop",
            "message_delta",
            "message_stop",
        ]
        text = "".join(data["delta"]["text"] for name, data in events if name == "content_block_delta")
        assert text == "Hello world"
        assert events[0][1]["message"]["model"] == "sonnet"

    def test_chat_completions_stream_passes_through(self, client, upstream):
        upstream.responder = sse_response
        payload = {
            "model": "haiku",
            "stream": True,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        with client.stream("POST", "/v1/chat/completions", json=payload) as response:
            assert response.status_code == 200
            assert response.headers["content-type"] == "text/event-stream"
            body = b"".join(response.iter_bytes())

        assert body == sse_body(STREAM_CHUNKS)


class TestPassthroughIntegration:
    """Tests for providers configured with only the endpoint transformer."""

    @pytest.fixture
    def anthropic_upstream(self) -> UpstreamRecorder:
        return UpstreamRecorder(
            lambda request: httpx.Response(
                200,
                json={
                    "id": "msg_1",
                    "type": "message",
                    "role": "assistant",
                    "model": "claude-sonnet-4-5",
                    "content": [{"type": "text", "text": "native"}],
                    "stop_reason": "end_turn",
                    "usage": {"input_tokens": 1, "output_tokens": 1},
                },
            )
        )

    @pytest.fixture
    def passthrough_client(self, anthropic_upstream):
        provider = {
            "name": "anthropic",
            "type": "anthropic",
            "baseUrl": "https://anthropic.test/v1/messages",
            "apiKey": "ant-key",
            "models": ["claude-sonnet-4-5"],
            "transformer": {"use": ["anthropic"]},
        }
        app = create_app(
            make_config(providers=[provider]),
            transport=anthropic_upstream.transport(),
            watch_config=False,
        )
        with TestClient(app) as test_client:
            yield test_client

    def test_body_and_response_are_untouched(self, passthrough_client, anthropic_upstream):
        payload = {
            "model": "anthropic,claude-sonnet-4-5",
            "max_tokens": 50,
            "messages": [{"role": "user", "content": "Hello"}],
            "metadata": {"user_id": "u1"},
        }

        response = passthrough_client.post(
            "/v1/messages",
            json=payload,
            headers={"Authorization": "Bearer caller-token", "X-Custom": "1"},
        )

        assert response.status_code == 200
        assert response.json()["content"] == [{"type": "text", "text": "native"}]

        sent = anthropic_upstream.last
        assert sent.headers["x-api-key"] == "ant-key"
        assert sent.headers["anthropic-version"] == "2023-06-01"
        assert sent.headers["x-custom"] == "1"
        assert "authorization" not in sent.headers
        assert sent.headers["host"] == "anthropic.test"
        assert anthropic_upstream.last_json == {
            **payload,
            "model": "claude-sonnet-4-5",
            "stream": False,
        }
