import asyncio

import pytest

from cellar_agent.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from cellar_agent.domain.models import ModelRequest, Turn
from cellar_agent.providers.gemini_client import GeminiClient
from cellar_agent.tools.cellar_tools import COMMIT_WINE_DEF


class SettingsStub:
    gemini_api_key = "g" * 16
    gemini_base_url = "http://proxy.local"
    http_timeout = 1.0


def _client_returning(status_code, payload, captured):
    class Resp:
        def __init__(self):
            self.status_code = status_code
            self.text = str(payload)

        def json(self):
            return payload

    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            captured["url"] = url
            captured["json"] = json
            captured["headers"] = headers
            return Resp()

    return Client


def test_gemini_generate_with_function_calls(monkeypatch):
    captured = {}
    payload = {
        "text": None,
        "functionCalls": [{"name": "stage_wine", "args": {"producer": "Guigal", "vintage": 2019}}],
        "candidateContent": {
            "role": "model",
            "parts": [{"functionCall": {"name": "stage_wine", "args": {"producer": "Guigal", "vintage": 2019}}}],
        },
    }
    monkeypatch.setattr("httpx.Client", _client_returning(200, payload, captured))
    gc = GeminiClient(SettingsStub())
    req = ModelRequest(
        model="sommelier-chat",
        contents=[Turn.user("Here is my label", image_base64="aGVsbG8=")],
        system_instruction="You are Rémy.",
        tools=[COMMIT_WINE_DEF],
    )
    res = gc.generate(req)

    assert captured["url"] == "http://proxy.local/gemini"
    assert captured["client_kwargs"]["trust_env"] is False
    body = captured["json"]
    assert body["model"] == "gemini-3-flash-preview"
    assert body["systemInstruction"] == "You are Rémy."
    assert body["contents"][0]["role"] == "user"
    assert body["contents"][0]["parts"][0] == {"text": "Here is my label"}
    assert body["contents"][0]["parts"][1] == {"inlineData": {"mimeType": "image/jpeg", "data": "aGVsbG8="}}
    decl = body["tools"][0]["functionDeclarations"][0]
    assert decl["name"] == "commit_wine"
    assert decl["parameters"]["required"] == ["price"]

    assert res.text == ""
    assert res.tool_calls[0].name == "stage_wine"
    assert res.tool_calls[0].arguments == {"producer": "Guigal", "vintage": 2019}
    assert res.can_resubmit_tools
    assert res.candidate_content.parts[0].function_call.name == "stage_wine"


def test_gemini_generate_plain_text(monkeypatch):
    captured = {}
    payload = {"text": "Magnifique!", "functionCalls": None, "candidateContent": None}
    monkeypatch.setattr("httpx.Client", _client_returning(200, payload, captured))
    res = GeminiClient(SettingsStub()).generate(ModelRequest(model="sommelier-chat", contents=[Turn.user("hi")]))
    assert res.text == "Magnifique!"
    assert res.tool_calls == []
    assert not res.can_resubmit_tools
    assert "tools" not in captured["json"]


def test_gemini_rate_limit_and_api_errors(monkeypatch):
    req = ModelRequest(model="sommelier-chat", contents=[Turn.user("hi")])
    monkeypatch.setattr("httpx.Client", _client_returning(429, {"error": "quota"}, {}))
    with pytest.raises(RateLimitError):
        GeminiClient(SettingsStub()).generate(req)

    monkeypatch.setattr("httpx.Client", _client_returning(500, {"error": "boom"}, {}))
    with pytest.raises(ApiError) as exc_info:
        GeminiClient(SettingsStub()).generate(req)
    assert exc_info.value.http_status == 500


def test_gemini_network_error(monkeypatch):
    import httpx

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            raise httpx.ConnectError("refused")

    monkeypatch.setattr("httpx.Client", Client)
    with pytest.raises(NetworkError):
        GeminiClient(SettingsStub()).generate(ModelRequest(model="sommelier-chat", contents=[Turn.user("hi")]))


def test_gemini_request_guard():
    gc = GeminiClient(SettingsStub())
    with pytest.raises(ValidationError):
        gc.generate(ModelRequest(model="gpt-4", contents=[Turn.user("hi")]))
    with pytest.raises(ValidationError):
        gc.generate(ModelRequest(model="sommelier-chat", contents=[]))
    with pytest.raises(ValidationError):
        gc.generate(ModelRequest(model="sommelier-chat", contents=[Turn.user(str(i)) for i in range(51)]))


def test_gemini_stream_text(monkeypatch):
    lines = [
        'data: {"text": "{\\"name\\": "}',
        "",
        'data: {"text": "\\"Barolo\\"}"}',
        "data: not-json",
        "data: [DONE]",
        'data: {"text": "ignored"}',
    ]

    class StreamResp:
        status_code = 200

        async def aiter_lines(self):
            for line in lines:
                yield line

        async def aread(self):
            return b""

    class StreamCtx:
        async def __aenter__(self):
            return StreamResp()

        async def __aexit__(self, *a):
            return False

    class AsyncClient:
        def __init__(self, *a, **kw):
            pass

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        def stream(self, method, url, json=None, headers=None):
            assert url == "http://proxy.local/gemini/stream"
            return StreamCtx()

    monkeypatch.setattr("httpx.AsyncClient", AsyncClient)
    gc = GeminiClient(SettingsStub())

    async def collect():
        req = ModelRequest(model="sommelier-chat", contents=[Turn.user("list")])
        return [t async for t in gc.stream_text(req)]

    assert asyncio.run(collect()) == ['{"name": ', '"Barolo"}']
