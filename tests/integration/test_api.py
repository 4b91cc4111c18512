"""
End-to-end tests for the transformer endpoints and base routes.
"""

import httpx
import pytest
from fastapi.testclient import TestClient

from llms.main import create_app
from llms.models.errors import InvalidRequestError
from llms.transformers.base import Capability, Transformer
from tests.helpers import chat_completion, make_config


class RejectingTransformer(Transformer):
    """Provider transformer whose response hook always fails."""

    name = "rejecting"
    capabilities = frozenset({Capability.RESPONSE_OUT})

    async def response_out(self, response, context):
        raise InvalidRequestError("Upstream response rejected")


class TestAppFactory:
    """Test cases for create_app."""

    def test_create_app_registers_routes(self):
        app = create_app(make_config(), watch_config=False)
        paths = {route.path for route in app.routes}

        assert {"/", "/health", "/v1/models", "/providers", "/providers/{name}"} <= paths
        assert {"/v1/messages", "/v1/chat/completions"} <= paths
        assert app.state.gateway.config.server.port == 3000


class TestBaseRoutes:
    """Test cases for root, health and model listing."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "LLMs API"

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert "timestamp" in data

    def test_request_id_and_timing_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Request-ID"].startswith("req_")
        assert response.headers["X-Process-Time"].endswith("s")

    def test_list_models(self, client):
        response = client.get("/v1/models")

        assert response.status_code == 200
        ids = [item["id"] for item in response.json()["data"]]
        assert "anthropic/claude-sonnet-4.5" in ids
        assert "openrouter,anthropic/claude-sonnet-4.5" in ids

    def test_unknown_route_uses_error_envelope(self, client):
        response = client.get("/missing")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "not_found"


class TestMessagesEndpoint:
    """Test cases for POST /v1/messages."""

    def test_alias_is_routed_and_converted(self, client, upstream):
        payload = {
            "model": "sonnet",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 200
        assert upstream.last_json["model"] == "anthropic/claude-sonnet-4.5"
        assert upstream.last.headers["authorization"] == "Bearer k"
        assert str(upstream.last.url) == "https://openrouter.test/api/v1/chat/completions"

        data = response.json()
        assert data["type"] == "message"
        assert data["model"] == "sonnet"
        assert data["content"] == [{"type": "text", "text": "Hello!"}]
        assert data["usage"] == {"input_tokens": 10, "output_tokens": 5}

    def test_explicit_provider_model(self, client, upstream):
        payload = {
            "model": "openrouter,anthropic/claude-haiku-4.5",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 200
        assert upstream.last_json["model"] == "anthropic/claude-haiku-4.5"

    def test_unknown_model_falls_back_to_default(self, client, upstream):
        payload = {
            "model": "gpt-4o",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 200
        assert upstream.last_json["model"] == "anthropic/claude-3.5-sonnet"

    def test_unknown_provider_returns_404(self, client):
        payload = {
            "model": "nobody,model",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "provider_not_found"

    def test_empty_model_part_returns_400(self, client):
        payload = {"model": "openrouter,", "max_tokens": 10, "messages": []}

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 400

    def test_missing_model_returns_400(self, client):
        response = client.post("/v1/messages", json={"messages": []})

        assert response.status_code == 400
        assert response.json()["error"]["type"] == "invalid_request_error"

    def test_invalid_json_returns_400(self, client):
        response = client.post(
            "/v1/messages", content=b"{not json", headers={"content-type": "application/json"}
        )

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Request body must be valid JSON"

    def test_upstream_error_is_propagated(self, client, upstream):
        upstream.responder = lambda request: httpx.Response(429, text="slow down")
        payload = {
            "model": "sonnet",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 429
        error = response.json()["error"]
        assert error["code"] == "provider_response_error"
        assert "slow down" in error["message"]

    def test_disabled_provider_returns_403(self, client):
        client.patch("/providers/openrouter/toggle", json={"enabled": False})
        payload = {
            "model": "sonnet",
            "max_tokens": 100,
            "messages": [{"role": "user", "content": "Hello"}],
        }

        response = client.post("/v1/messages", json=payload)

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "provider_disabled"


class TestChatCompletionsEndpoint:
    """Test cases for POST /v1/chat/completions."""

    def test_passthrough_response(self, client, upstream):
        upstream.responder = lambda request: httpx.Response(
            200, json=chat_completion("Hi there", model="anthropic/claude-haiku-4.5")
        )
        payload = {
            "model": "haiku",
            "messages": [{"role": "user", "content": "Hello"}],
            "temperature": 0.5,
        }

        response = client.post("/v1/chat/completions", json=payload)

        assert response.status_code == 200
        assert response.json()["choices"][0]["message"]["content"] == "Hi there"
        sent = upstream.last_json
        assert sent["model"] == "anthropic/claude-haiku-4.5"
        assert sent["temperature"] == 0.5
        assert sent["stream"] is False


class TestResponseTransformFailure:
    """Test cases for failures raised while transforming the upstream response."""

    @pytest.fixture
    def limited_client(self, upstream):
        provider = {
            "name": "limited",
            "baseUrl": "https://limited.test/v1/chat/completions",
            "apiKey": "k",
            "models": ["m"],
            "maxConcurrency": 1,
            "transformer": {"use": ["rejecting"]},
        }
        app = create_app(
            make_config(providers=[provider], api_timeout_ms=1000),
            transport=upstream.transport(),
            watch_config=False,
        )
        app.state.gateway.transformers.register_transformer("rejecting", RejectingTransformer)
        with TestClient(app) as test_client:
            yield test_client

    def test_upstream_is_released_when_transform_fails(self, limited_client, upstream):
        payload = {"model": "limited,m", "messages": [{"role": "user", "content": "Hello"}]}

        first = limited_client.post("/v1/chat/completions", json=payload)
        second = limited_client.post("/v1/chat/completions", json=payload)

        assert first.status_code == 400
        assert second.status_code == 400
        assert second.json()["error"]["message"] == "Upstream response rejected"
        assert len(upstream.requests) == 2
