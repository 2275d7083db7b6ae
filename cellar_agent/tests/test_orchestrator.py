import tempfile

import pytest

from cellar_agent.agents.orchestrator import (
    DEFAULT_IMAGE_PROMPT,
    QUOTA_APOLOGY,
    Orchestrator,
    build_user_turn,
    purchase_hint,
)
from cellar_agent.agents.session import Session
from cellar_agent.agents.sommelier_agent import SommelierAgent
from cellar_agent.domain.exceptions import RateLimitError
from cellar_agent.domain.history import TurnHistory
from cellar_agent.domain.models import FunctionCall, ModelResponse, Part, Turn
from cellar_agent.flows.graph import PLACEHOLDER_ANSWER
from cellar_agent.infrastructure.storage.json_store import JsonInventoryStore
from cellar_agent.providers.gemini_client import GeminiClient
from cellar_agent.providers.registry import MAX_CONTENTS
from cellar_agent.tools.cellar_tools import register_cellar_tools
from cellar_agent.tools.definitions import ToolCall
from cellar_agent.tools.executor import ToolRegistry


class ScriptedClient:
    """按顺序返回预设响应的假模型客户端；响应为异常时直接抛出。"""

    name = "scripted"

    def __init__(self, responses):
        self._responses = list(responses)
        self.requests = []

    def generate(self, req):
        self.requests.append(req)
        item = self._responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


def _call_response(name, args, call_id="call-1", text=""):
    return ModelResponse(
        text=text,
        tool_calls=[ToolCall(id=call_id, name=name, arguments=args)],
        candidate_content=Turn(
            role="model",
            parts=[Part(function_call=FunctionCall(name=name, args=args, id=call_id))],
        ),
    )


def _orchestrator(client, store, max_rounds=5):
    registry = ToolRegistry()
    register_cellar_tools(registry, store, store)
    return Orchestrator(client, registry, model="sommelier-chat", max_rounds=max_rounds,
                        system_prompt=lambda s: "You are Rémy.")


def test_single_tool_round_then_answer():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([
            _call_response("stage_wine", {"producer": "Guigal", "vintage": 2019}),
            ModelResponse(text="Superb bottle! What did you pay, and how many?"),
        ])
        session = Session(history=TurnHistory(5))
        result = _orchestrator(client, JsonInventoryStore(root=d)).handle_message(session, "Here is my label")

        assert result.text == "Superb bottle! What did you pay, and how many?"
        assert result.rounds == 1
        assert not result.exhausted
        assert [c.name for c in result.tool_calls] == ["stage_wine"]
        assert result.tool_calls[0].round == 1
        assert session.staged.producer == "Guigal"

        assert len(client.requests) == 2
        assert [t.role for t in client.requests[1].contents] == ["user", "model", "function"]
        assert client.requests[1].system_instruction == "You are Rémy."
        assert [t.name for t in client.requests[0].tools] == ["query_inventory", "stage_wine", "commit_wine"]

        turns = session.history.snapshot()
        assert [t.role for t in turns] == ["user", "model", "function", "model"]
        response = turns[2].parts[0].function_response
        assert response.name == "stage_wine"
        assert response.id == "call-1"
        assert response.response["result"].startswith("Wine staged:")


def test_function_response_id_only_when_model_sent_one():
    with tempfile.TemporaryDirectory() as d:
        resp = _call_response("stage_wine", {"producer": "Guigal"}, call_id="call_deadbeef_0")
        resp.candidate_content.parts[0].function_call.id = None
        client = ScriptedClient([resp, ModelResponse(text="Staged.")])
        session = Session(history=TurnHistory(5))
        _orchestrator(client, JsonInventoryStore(root=d)).handle_message(session, "label")
        assert session.history.snapshot()[2].parts[0].function_response.id is None


def test_round_cap_returns_placeholder():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([
            _call_response("query_inventory", {"wine_type": "Red"}, call_id=f"c{i}") for i in range(3)
        ])
        session = Session(history=TurnHistory(5))
        result = _orchestrator(client, JsonInventoryStore(root=d), max_rounds=2).handle_message(session, "reds?")

        assert len(client.requests) == 3
        assert result.exhausted
        assert result.rounds == 2
        assert result.text == PLACEHOLDER_ANSWER
        assert [t.role for t in session.history.snapshot()] == [
            "user", "model", "function", "model", "function", "model",
        ]


def test_round_cap_prefers_last_model_text():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([
            _call_response("query_inventory", {}, call_id="c0", text="Let me look in the cellar."),
            _call_response("query_inventory", {}, call_id="c1"),
        ])
        session = Session(history=TurnHistory(5))
        result = _orchestrator(client, JsonInventoryStore(root=d), max_rounds=1).handle_message(session, "anything?")
        assert result.exhausted
        assert result.text == "Let me look in the cellar."


def test_quota_error_returns_apology_without_history():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([RateLimitError(code="RATE_LIMIT", message="quota", http_status=429)])
        session = Session(history=TurnHistory(5))
        result = _orchestrator(client, JsonInventoryStore(root=d)).handle_message(session, "hello")
        assert result.text == QUOTA_APOLOGY
        assert result.rate_limited
        assert len(session.history) == 0
        assert len(client.requests) == 1


def test_tool_calls_without_candidate_are_not_dispatched():
    with tempfile.TemporaryDirectory() as d:
        store = JsonInventoryStore(root=d)
        client = ScriptedClient([
            ModelResponse(text="Noted.", tool_calls=[ToolCall(id="c1", name="stage_wine", arguments={"producer": "X"})]),
        ])
        session = Session(history=TurnHistory(5))
        result = _orchestrator(client, store).handle_message(session, "stage it")
        assert result.text == "Noted."
        assert result.rounds == 0
        assert session.staged is None
        assert [t.role for t in session.history.snapshot()] == ["user", "model"]


def test_empty_message_is_ignored():
    client = ScriptedClient([])
    with tempfile.TemporaryDirectory() as d:
        result = _orchestrator(client, JsonInventoryStore(root=d)).handle_message(Session(history=TurnHistory(5)), "")
    assert result.text == ""
    assert client.requests == []


def test_invalid_round_limit():
    with pytest.raises(ValueError):
        Orchestrator(ScriptedClient([]), ToolRegistry(), max_rounds=0)


def test_history_window_across_messages():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([ModelResponse(text=f"answer {i}") for i in range(3)])
        orch = _orchestrator(client, JsonInventoryStore(root=d))
        session = Session(history=TurnHistory(2))
        for text in ("first", "second", "third"):
            orch.handle_message(session, text)
        turns = session.history.snapshot()
        assert [t.text for t in turns] == ["second", "answer 1", "third", "answer 2"]
        # 第三次请求只带窗口内的历史加上新消息
        assert [t.text for t in client.requests[2].contents] == ["first", "answer 0", "second", "answer 1", "third"]


def test_purchase_hint_and_user_turn():
    assert purchase_hint("I paid $35.50 for 6 bottles") == (
        "[System Note: User provided potential values - Price: 35.5, Qty: 6]"
    )
    assert purchase_hint("just one bottle please") is None
    assert purchase_hint("it was $40") == "[System Note: User provided potential values - Price: 40.0, Qty: None]"

    turn = build_user_turn("", image_base64="aGVsbG8=")
    assert turn.parts[0].text == DEFAULT_IMAGE_PROMPT
    assert turn.parts[1].inline_data.data == "aGVsbG8="

    turn = build_user_turn("12 bottles at $20")
    assert turn.parts[-1].text.endswith("Price: 20.0, Qty: 12]")


def test_sommelier_agent_stage_and_commit_flow():
    with tempfile.TemporaryDirectory() as d:
        client = ScriptedClient([
            _call_response("stage_wine", {"producer": "Guigal", "name": "Côte-Rôtie", "vintage": 2019}),
            ModelResponse(text="What did you pay?"),
            _call_response("commit_wine", {"price": 35.5, "quantity": 6}, call_id="call-2"),
            ModelResponse(text="Added to your cellar."),
        ])
        store = JsonInventoryStore(root=d)
        agent = SommelierAgent(provider_client=client, store=store, max_rounds=3)

        session, first = agent.chat("Here is my label", image_base64="aGVsbG8=")
        assert first.text == "What did you pay?"
        assert "STAGED WINE (Awaiting Price/Quantity)" in client.requests[1].system_instruction
        assert "The cellar is currently empty." in client.requests[0].system_instruction

        _, second = agent.chat("I paid $35.50 for 6 bottles", session_id=session.id)
        assert second.text == "Added to your cellar."
        assert "Price: 35.5, Qty: 6" in client.requests[2].contents[-1].parts[-1].text
        assert "No wine currently staged." in client.requests[3].system_instruction
        assert session.staged is None
        wines = store.list_wines()
        assert len(wines) == 1
        assert wines[0].quantity == 6


class ProxySettings:
    gemini_api_key = "g" * 16
    gemini_base_url = "http://proxy.local"
    http_timeout = 1.0


def _always_calling_tools(sizes):
    """代理总是返回一个 query_inventory 调用；记录每次请求的 contents 长度。"""
    payload = {
        "text": None,
        "functionCalls": [{"name": "query_inventory", "args": {"wine_type": "Red"}}],
        "candidateContent": {
            "role": "model",
            "parts": [{"functionCall": {"name": "query_inventory", "args": {"wine_type": "Red"}}}],
        },
    }

    class Resp:
        status_code = 200
        text = ""

        def json(self):
            return payload

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None):
            sizes.append(len(json["contents"]))
            return Resp()

    return Client


def test_tool_heavy_conversation_stays_under_request_turn_limit(monkeypatch):
    sizes = []
    monkeypatch.setattr("httpx.Client", _always_calling_tools(sizes))
    with tempfile.TemporaryDirectory() as d:
        orch = _orchestrator(GeminiClient(ProxySettings()), JsonInventoryStore(root=d), max_rounds=5)
        session = Session(history=TurnHistory(5))
        results = [orch.handle_message(session, f"any reds? #{i}") for i in range(6)]

    assert all(r.exhausted for r in results)
    assert all(r.text == PLACEHOLDER_ANSWER for r in results)
    assert len(sizes) == 6 * 6
    assert max(sizes) <= MAX_CONTENTS
    # 每条消息 12 个轮次全部写入历史，窗口仍按 user 轮次计
    assert session.history.user_turn_count() == 5
    assert len(session.history) == 60
