"""
Transformer pipeline tests.
"""

import pytest

from llms.core.pipeline import TransformerChain, merge_config, should_bypass
from llms.models.provider import ProviderDescriptor
from llms.transformers.anthropic import AnthropicTransformer
from llms.transformers.base import (
    Capability,
    ProviderResponse,
    TransformedRequest,
    Transformer,
    TransformerContext,
)
from llms.transformers.service import TransformerService


class RecordingTransformer(Transformer):
    """Appends its name to body["trace"] and to context["order"]."""

    name = "recording"
    capabilities = frozenset({Capability.REQUEST_IN, Capability.RESPONSE_OUT})

    def __init__(self, options=None):
        super().__init__(options)
        self.name = self.options.get("label", "recording")

    async def request_in(self, body, provider, context):
        body = {**body, "trace": [*body.get("trace", []), self.name]}
        return TransformedRequest(body, {"headers": {"x-step": self.name}})

    async def response_out(self, response, context):
        context.setdefault("order", []).append(self.name)
        return response


class CountingEndpoint(Transformer):
    """Endpoint transformer counting calls to each of its hooks."""

    name = "counting"
    end_point = "/counting"
    capabilities = frozenset(
        {
            Capability.REQUEST_IN,
            Capability.REQUEST_OUT,
            Capability.RESPONSE_IN,
            Capability.RESPONSE_OUT,
            Capability.AUTH,
        }
    )

    def __init__(self, options=None):
        super().__init__(options)
        self.request_in_calls = 0
        self.request_out_calls = 0
        self.response_out_calls = 0
        self.auth_calls = 0

    async def request_in(self, body, provider, context):
        self.request_in_calls += 1
        return TransformedRequest(body)

    async def request_out(self, body, context):
        self.request_out_calls += 1
        return TransformedRequest({**body, "converted": True})

    async def response_in(self, response, context):
        context.setdefault("order", []).append("endpoint")
        return response

    async def response_out(self, response, context):
        self.response_out_calls += 1
        return response

    async def auth(self, body, provider, context):
        self.auth_calls += 1
        return TransformedRequest(
            body,
            {
                "headers": {
                    "x-api-key": provider.api_key,
                    "authorization": None,
                    "host": "upstream.internal",
                }
            },
        )


@pytest.fixture
def service() -> TransformerService:
    service = TransformerService()
    service.initialize()
    service.register_transformer("recording", RecordingTransformer)
    service.register_transformer("counting", CountingEndpoint)
    return service


def make_provider(service: TransformerService, transformer: dict | None) -> ProviderDescriptor:
    provider = ProviderDescriptor(
        name="p",
        base_url="https://p.test/v1/chat/completions",
        api_key="secret",
        models=["m"],
        transformer=transformer,
    )
    provider.transformers = service.build_provider_transformers(transformer)
    return provider


class TestMergeConfig:
    """Test cases for merge_config."""

    def test_headers_are_merged_case_insensitively(self):
        merged = merge_config(
            {"headers": {"X-A": "1", "x-b": "2"}},
            {"headers": {"x-a": "3"}, "url": "https://other"},
        )

        assert merged == {"headers": {"x-a": "3", "x-b": "2"}, "url": "https://other"}

    def test_empty_fragment_keeps_base(self):
        base = {"url": "https://x"}

        assert merge_config(base, None) is base
        assert merge_config(base, {}) is base


class TestBypass:
    """Test cases for the passthrough decision."""

    def test_single_matching_transformer_bypasses(self, service):
        provider = make_provider(service, {"use": ["counting"]})

        assert should_bypass(CountingEndpoint(), provider, "m") is True

    def test_model_chain_with_same_transformer_still_bypasses(self, service):
        provider = make_provider(service, {"use": ["counting"], "m": {"use": ["counting"]}})

        assert should_bypass(CountingEndpoint(), provider, "m") is True

    def test_additional_transformers_disable_bypass(self, service):
        assert not should_bypass(
            CountingEndpoint(), make_provider(service, {"use": ["counting", "recording"]}), "m"
        )
        assert not should_bypass(
            CountingEndpoint(),
            make_provider(service, {"use": ["counting"], "m": {"use": ["recording"]}}),
            "m",
        )
        assert not should_bypass(CountingEndpoint(), make_provider(service, None), "m")
        assert not should_bypass(
            AnthropicTransformer(), make_provider(service, {"use": ["counting"]}), "m"
        )

    @pytest.mark.asyncio
    async def test_bypass_only_runs_auth(self, service):
        provider = make_provider(service, {"use": ["counting"]})
        endpoint = CountingEndpoint()
        chain = TransformerChain(endpoint, provider, "m")
        body = {"model": "m", "messages": []}
        headers = {
            "Host": "gateway.local",
            "Authorization": "Bearer caller",
            "Content-Length": "42",
            "Connection": "keep-alive",
            "X-Trace": "abc",
        }

        outbound = await chain.transform_request(body, headers, TransformerContext("req"))

        assert chain.bypass is True
        assert endpoint.auth_calls == 1
        assert endpoint.request_in_calls == 0
        assert endpoint.request_out_calls == 0
        assert provider.transformers.use[0].request_in_calls == 0
        assert outbound.body == body
        assert outbound.config["headers"] == {
            "x-trace": "abc",
            "x-api-key": "secret",
            "authorization": None,
        }

    @pytest.mark.asyncio
    async def test_bypass_strips_host_added_by_auth(self, service):
        provider = make_provider(service, {"use": ["counting"]})
        chain = TransformerChain(CountingEndpoint(), provider, "m")

        outbound = await chain.transform_request({"model": "m"}, {}, TransformerContext())

        assert "host" not in outbound.config["headers"]

    @pytest.mark.asyncio
    async def test_bypass_returns_response_untouched(self, service):
        provider = make_provider(service, {"use": ["counting"]})
        endpoint = CountingEndpoint()
        chain = TransformerChain(endpoint, provider, "m")
        response = ProviderResponse.from_json({"ok": True})
        context = TransformerContext()

        assert await chain.transform_response(response, context) is response
        assert "order" not in context
        assert endpoint.response_out_calls == 0
        assert provider.transformers.use[0].response_out_calls == 0


class TestTransformerChain:
    """Test cases for request and response ordering."""

    @pytest.mark.asyncio
    async def test_request_runs_endpoint_then_provider_then_model_chain(self, service):
        provider = make_provider(
            service,
            {
                "use": [["recording", {"label": "T1"}], ["recording", {"label": "T2"}]],
                "m": {"use": [["recording", {"label": "M1"}]]},
            },
        )
        chain = TransformerChain(CountingEndpoint(), provider, "m")

        outbound = await chain.transform_request({"model": "m"}, {}, TransformerContext())

        assert outbound.body["converted"] is True
        assert outbound.body["trace"] == ["T1", "T2", "M1"]
        assert outbound.config == {"headers": {"x-step": "M1"}}

    @pytest.mark.asyncio
    async def test_response_runs_in_reverse_then_endpoint(self, service):
        provider = make_provider(
            service,
            {
                "use": [["recording", {"label": "T1"}], ["recording", {"label": "T2"}]],
                "m": {"use": [["recording", {"label": "M1"}], ["recording", {"label": "M2"}]]},
            },
        )
        chain = TransformerChain(CountingEndpoint(), provider, "m")
        context = TransformerContext()

        await chain.transform_response(ProviderResponse.from_json({}), context)

        assert context["order"] == ["T2", "T1", "M2", "M1", "endpoint"]

    @pytest.mark.asyncio
    async def test_other_models_do_not_get_model_chain(self, service):
        provider = make_provider(
            service,
            {"use": [["recording", {"label": "T1"}]], "m": {"use": [["recording", {"label": "M1"}]]}},
        )
        chain = TransformerChain(CountingEndpoint(), provider, "other")

        outbound = await chain.transform_request({"model": "other"}, {}, TransformerContext())

        assert outbound.body["trace"] == ["T1"]

    @pytest.mark.asyncio
    async def test_unknown_transformer_is_skipped_when_not_strict(self, service):
        provider = make_provider(service, {"use": ["missing", ["recording", {"label": "T1"}]]})

        assert [t.name for t in provider.transformers.use] == ["T1"]
