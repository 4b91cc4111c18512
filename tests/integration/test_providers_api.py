"""
Provider management API tests.
"""

import pytest


@pytest.fixture
def new_provider() -> dict:
    return {
        "id": "deepseek",
        "name": "deepseek",
        "type": "openai",
        "baseUrl": "https://deepseek.test/chat/completions",
        "apiKey": "ds-key",
        "models": ["deepseek-chat", "deepseek-reasoner"],
    }


class TestProvidersApi:
    """Test cases for /providers CRUD."""

    def test_list_providers(self, client):
        response = client.get("/providers")

        assert response.status_code == 200
        assert [p["name"] for p in response.json()] == ["openrouter"]

    def test_create_and_get_provider(self, client, new_provider):
        response = client.post("/providers", json=new_provider)

        assert response.status_code == 200
        assert response.json()["baseUrl"] == new_provider["baseUrl"]
        assert response.json()["enabled"] is True

        fetched = client.get("/providers/deepseek")
        assert fetched.status_code == 200
        assert fetched.json()["models"] == ["deepseek-chat", "deepseek-reasoner"]

    def test_created_provider_is_routable(self, client, upstream, new_provider):
        client.post("/providers", json=new_provider)

        response = client.post(
            "/v1/chat/completions",
            json={"model": "deepseek-chat", "messages": [{"role": "user", "content": "hi"}]},
        )

        assert response.status_code == 200
        assert str(upstream.last.url) == "https://deepseek.test/chat/completions"
        assert upstream.last.headers["authorization"] == "Bearer ds-key"

    def test_duplicate_name_returns_400(self, client, new_provider):
        client.post("/providers", json=new_provider)

        response = client.post("/providers", json=new_provider)

        assert response.status_code == 400
        error = response.json()["error"]
        assert error["code"] == "provider_exists"
        assert error["message"] == "Provider with name 'deepseek' already exists"

    @pytest.mark.parametrize(
        "field, value, message",
        [
            ("name", " ", "Provider name is required"),
            ("baseUrl", "not-a-url", "Valid base URL is required"),
            ("apiKey", "", "API key is required"),
            ("models", [], "At least one model is required"),
        ],
    )
    def test_invalid_fields_return_400(self, client, new_provider, field, value, message):
        new_provider[field] = value

        response = client.post("/providers", json=new_provider)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == message

    def test_missing_field_returns_400(self, client, new_provider):
        del new_provider["apiKey"]

        response = client.post("/providers", json=new_provider)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "invalid_request"

    def test_unknown_transformer_returns_400(self, client, new_provider):
        new_provider["transformer"] = {"use": ["does-not-exist"]}

        response = client.post("/providers", json=new_provider)

        assert response.status_code == 400
        assert client.get("/providers/deepseek").status_code == 404

    def test_update_provider(self, client, new_provider):
        client.post("/providers", json=new_provider)

        response = client.put(
            "/providers/deepseek", json={"apiKey": "new-key", "models": ["deepseek-chat"]}
        )

        assert response.status_code == 200
        assert response.json()["apiKey"] == "new-key"
        ids = [item["id"] for item in client.get("/v1/models").json()["data"]]
        assert "deepseek,deepseek-chat" in ids
        assert "deepseek,deepseek-reasoner" not in ids

    def test_update_with_invalid_base_url_returns_400(self, client):
        response = client.put("/providers/openrouter", json={"baseUrl": "ftp://x"})

        assert response.status_code == 400

    def test_update_with_blank_model_returns_400(self, client):
        response = client.put("/providers/openrouter", json={"models": [""]})

        assert response.status_code == 400
        models = client.get("/providers/openrouter").json()["models"]
        assert "" not in models

    def test_delete_provider(self, client, new_provider):
        client.post("/providers", json=new_provider)

        response = client.delete("/providers/deepseek")

        assert response.status_code == 200
        assert response.json() == {"message": "Provider deleted successfully"}
        assert client.get("/providers/deepseek").status_code == 404

    def test_toggle_provider(self, client):
        response = client.patch("/providers/openrouter/toggle", json={"enabled": False})

        assert response.status_code == 200
        assert response.json() == {"message": "Provider disabled successfully", "enabled": False}
        assert client.get("/providers/openrouter").json()["enabled"] is False

    @pytest.mark.parametrize(
        "method, path, body",
        [
            ("get", "/providers/missing", None),
            ("put", "/providers/missing", {"apiKey": "x"}),
            ("delete", "/providers/missing", None),
            ("patch", "/providers/missing/toggle", {"enabled": True}),
        ],
    )
    def test_unknown_provider_returns_404(self, client, method, path, body):
        kwargs = {"json": body} if body is not None else {}

        response = client.request(method.upper(), path, **kwargs)

        assert response.status_code == 404
        error = response.json()["error"]
        assert error["code"] == "provider_not_found"
        assert error["message"] == "Provider 'missing' not found"
