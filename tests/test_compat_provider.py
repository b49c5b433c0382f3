"""Tests for insight/compat_provider.py — Chat Completions wire contract."""

from __future__ import annotations

import json

import httpx
import pytest

from config.settings import Provider, ProviderSettings
from insight.compat_provider import CompatProvider, normalize_base_url, parse_error_body
from insight.errors import (
    AuthError,
    BillingError,
    ErrorKind,
    ProviderError,
    QuotaError,
    TransientProviderError,
)
from insight.models import FileAttachment, GenericRequest


def make_settings(provider=Provider.SILICONFLOW, **overrides) -> ProviderSettings:
    values = dict(provider=provider, api_key="sk-test", base_url="", model="", enable_search=True)
    values.update(overrides)
    return ProviderSettings(**values)


class Recorder:
    """MockTransport handler that records requests and replays one response."""

    def __init__(self, status=200, body=None, text=None) -> None:
        self.status = status
        self.body = body
        self.text = text
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body)

    @property
    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def ok_body(content="Hello", **extra) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": content}}], **extra}


def make_provider(settings, recorder) -> CompatProvider:
    return CompatProvider(settings, transport=httpx.MockTransport(recorder))


class TestNormalizeBaseUrl:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("https://api.openai.com/v1", "https://api.openai.com/v1/chat/completions"),
            ("https://api.openai.com/v1/", "https://api.openai.com/v1/chat/completions"),
            ("https://open.bigmodel.cn/api/paas/v4///", "https://open.bigmodel.cn/api/paas/v4/chat/completions"),
            ("https://api.siliconflow.cn/v1/chat/completions", "https://api.siliconflow.cn/v1/chat/completions"),
            ("https://x.io/v1/chat/completions/", "https://x.io/v1/chat/completions"),
            ("https://x.io/v1/chat/completions/chat/completions", "https://x.io/v1/chat/completions"),
        ],
    )
    def test_suffix_exactly_once(self, raw, expected):
        assert normalize_base_url(raw) == expected


class TestParseErrorBody:
    def test_top_level_shape(self):
        assert parse_error_body('{"code": 1113, "message": "余额不足"}') == ("1113", "余额不足")

    def test_nested_shape(self):
        body = '{"error": {"code": "invalid_api_key", "message": "Incorrect API key"}}'
        assert parse_error_body(body) == ("invalid_api_key", "Incorrect API key")

    def test_not_json(self):
        assert parse_error_body("<html>Bad Gateway</html>") == (None, None)


class TestRequestBody:
    @pytest.mark.asyncio
    async def test_wire_contract(self):
        recorder = Recorder(body=ok_body())
        provider = make_provider(make_settings(), recorder)

        result = await provider.call(
            GenericRequest(prompt="question", system_instruction="be precise", temperature=0.2)
        )

        request = recorder.requests[0]
        assert str(request.url) == "https://api.siliconflow.cn/v1/chat/completions"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert request.headers["Content-Type"] == "application/json"
        body = recorder.last_json
        assert body["model"] == "Pro/zai-org/GLM-4.7"
        assert body["messages"] == [
            {"role": "system", "content": "be precise"},
            {"role": "user", "content": "question"},
        ]
        assert body["temperature"] == 0.2
        assert body["max_tokens"] >= 4096
        assert body["stream"] is False
        assert "tools" not in body
        assert result.text == "Hello"
        assert result.sources == []

    @pytest.mark.asyncio
    async def test_json_mode_sets_response_format(self):
        recorder = Recorder(body=ok_body('{"a": 1}'))
        await make_provider(make_settings(), recorder).call(GenericRequest(prompt="p", json_mode=True))
        assert recorder.last_json["response_format"] == {"type": "json_object"}

    @pytest.mark.asyncio
    async def test_search_tool_for_capable_provider(self):
        recorder = Recorder(body=ok_body(web_search=[{"title": "Paper", "link": "https://arxiv.org/abs/1"}]))
        provider = make_provider(make_settings(Provider.ZHIPU), recorder)

        result = await provider.call(GenericRequest(prompt="p", enable_search=True))

        assert recorder.last_json["tools"][0]["type"] == "web_search"
        assert [s.uri for s in result.sources] == ["https://arxiv.org/abs/1"]

    @pytest.mark.asyncio
    async def test_search_off_sends_no_tool(self):
        recorder = Recorder(body=ok_body())
        await make_provider(make_settings(Provider.ZHIPU), recorder).call(
            GenericRequest(prompt="p", enable_search=False)
        )
        assert "tools" not in recorder.last_json

    @pytest.mark.asyncio
    async def test_attachment_sent_as_file_part(self):
        recorder = Recorder(body=ok_body())
        request = GenericRequest(prompt="p", attachments=[FileAttachment(data=b"%PDF", filename="x.pdf")])

        await make_provider(make_settings(Provider.OPENAI), recorder).call(request)

        user = recorder.last_json["messages"][-1]["content"]
        assert user[0] == {"type": "text", "text": "p"}
        assert user[1]["file"]["filename"] == "x.pdf"
        assert user[1]["file"]["file_data"].startswith("data:application/pdf;base64,")


class TestErrors:
    @pytest.mark.asyncio
    async def test_billing_code_gives_actionable_message(self):
        recorder = Recorder(status=429, body={"error": {"code": "1113", "message": "余额不足"}})
        provider = make_provider(make_settings(Provider.ZHIPU, model="glm-4-plus"), recorder)

        with pytest.raises(BillingError) as exc_info:
            await provider.call(GenericRequest(prompt="p"))

        message = str(exc_info.value)
        assert "glm-4-plus" in message
        assert "glm-4-flash" in message
        assert exc_info.value.code == "1113"

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        recorder = Recorder(status=401, body={"error": {"message": "Invalid token"}})
        with pytest.raises(AuthError):
            await make_provider(make_settings(), recorder).call(GenericRequest(prompt="p"))

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        recorder = Recorder(status=429, body={"code": "rate_limit_exceeded", "message": "slow down"})
        with pytest.raises(QuotaError):
            await make_provider(make_settings(), recorder).call(GenericRequest(prompt="p"))

    @pytest.mark.asyncio
    async def test_non_json_server_error(self):
        recorder = Recorder(status=502, text="<html>Bad Gateway</html>")
        with pytest.raises(TransientProviderError) as exc_info:
            await make_provider(make_settings(), recorder).call(GenericRequest(prompt="p"))
        assert "Bad Gateway" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_network_failure_is_transient(self):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = CompatProvider(make_settings(), transport=httpx.MockTransport(boom))
        with pytest.raises(TransientProviderError):
            await provider.call(GenericRequest(prompt="p"))

    @pytest.mark.asyncio
    async def test_malformed_success_body(self):
        recorder = Recorder(body={"unexpected": True})
        with pytest.raises(ProviderError) as exc_info:
            await make_provider(make_settings(), recorder).call(GenericRequest(prompt="p"))
        assert exc_info.value.kind == ErrorKind.UNKNOWN
