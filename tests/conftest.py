"""Shared fixtures: upstream fakes, gateway and app clients."""

import pytest
from fastapi.testclient import TestClient

from llms.core.gateway import Gateway
from llms.main import create_app
from tests.helpers import UpstreamRecorder, make_config


@pytest.fixture
def upstream() -> UpstreamRecorder:
    return UpstreamRecorder()


@pytest.fixture
def openrouter_provider() -> dict:
    return {
        "id": "openrouter",
        "name": "openrouter",
        "type": "openai",
        "baseUrl": "https://openrouter.test/api/v1/chat/completions",
        "apiKey": "k",
        "models": ["anthropic/claude-sonnet-4.5", "anthropic/claude-haiku-4.5"],
    }


@pytest.fixture
def gateway(upstream: UpstreamRecorder) -> Gateway:
    return Gateway(make_config(), transport=upstream.transport())


@pytest.fixture
def client(upstream: UpstreamRecorder, openrouter_provider: dict):
    """TestClient running the full lifespan against the recorded upstream."""
    app = create_app(
        make_config(providers=[openrouter_provider]),
        transport=upstream.transport(),
        watch_config=False,
    )
    with TestClient(app) as test_client:
        yield test_client
