"""LangGraph construction and node implementations for the tool loop.

model -> (tools -> model)* -> finalize. Each pass through ``tools`` is one
round; the loop stops when the model answers without resubmittable tool calls
or when ``max_rounds`` batches have been dispatched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from cellar_agent.agents.session import Session
from cellar_agent.domain.history import trim_to_limit
from cellar_agent.domain.models import FunctionResponse, ModelRequest, Part, Turn
from cellar_agent.flows.state import Phase, TurnState
from cellar_agent.infrastructure.logging.logger import logger
from cellar_agent.providers.base import ModelClient
from cellar_agent.providers.registry import MAX_CONTENTS
from cellar_agent.tools.executor import ToolRegistry

PLACEHOLDER_ANSWER = "I have processed your request."


@dataclass
class TurnContext:
    client: ModelClient
    registry: ToolRegistry
    model: str
    max_rounds: int
    system_prompt: Optional[Callable[[Session], str]] = None
    max_contents: int = MAX_CONTENTS


def model_node(state: TurnState, ctx: TurnContext) -> TurnState:
    session = state["session"]
    logger.info(
        "model_node.start",
        extra={"extra": {"session_id": session.id, "round": state["round"], "turns": len(state["contents"])}},
    )
    contents = trim_to_limit(state["contents"], ctx.max_contents)
    if len(contents) < len(state["contents"]):
        logger.info(
            "model_node.contents_trimmed",
            extra={"extra": {"session_id": session.id, "dropped": len(state["contents"]) - len(contents)}},
        )
    tools = ctx.registry.definitions()
    req = ModelRequest(
        model=ctx.model,
        contents=contents,
        system_instruction=ctx.system_prompt(session) if ctx.system_prompt else None,
        tools=tools or None,
    )
    resp = ctx.client.generate(req)
    state["response"] = resp
    if resp.text:
        state["last_text"] = resp.text

    if resp.can_resubmit_tools:
        if state["round"] < ctx.max_rounds:
            state["phase"] = Phase.EXECUTING_TOOLS
        else:
            state["exhausted"] = True
            state["phase"] = Phase.DONE
            logger.warning(
                "model_node.rounds_exhausted",
                extra={"extra": {"session_id": session.id, "max_rounds": ctx.max_rounds}},
            )
    else:
        state["final_text"] = resp.text
        state["phase"] = Phase.DONE
    logger.info(
        "model_node.end",
        extra={"extra": {"session_id": session.id, "tool_calls": len(resp.tool_calls), "phase": state["phase"].value}},
    )
    return state


def tool_node(state: TurnState, ctx: TurnContext) -> TurnState:
    session = state["session"]
    resp = state["response"]
    round_no = state["round"] + 1
    calls = list(resp.tool_calls)
    for call in calls:
        call.round = round_no
    logger.info(
        "tool_node.execute",
        extra={"extra": {"session_id": session.id, "round": round_no, "tools": [c.name for c in calls]}},
    )
    results = ctx.registry.dispatch(calls, session)

    call_turn = resp.candidate_content
    known_ids = {p.function_call.id for p in call_turn.parts if p.function_call is not None and p.function_call.id}
    result_turn = Turn(
        role="function",
        parts=[
            Part(
                function_response=FunctionResponse(
                    name=r.name,
                    response={"result": r.content},
                    id=r.call_id if r.call_id in known_ids else None,
                )
            )
            for r in results
        ],
    )
    state["contents"].extend([call_turn, result_turn])
    state["pending"].extend([call_turn, result_turn])
    state["tool_batches"].append(calls)
    state["round"] = round_no
    state["phase"] = Phase.AWAITING_MODEL
    return state


def finalize_node(state: TurnState) -> TurnState:
    session = state["session"]
    text = state.get("final_text") or state.get("last_text") or PLACEHOLDER_ANSWER
    session.history.extend(state["pending"])
    session.history.append(Turn.model_text(text))
    dropped = session.history.enforce_window()
    state["final_text"] = text
    state["phase"] = Phase.DONE
    logger.info(
        "finalize_node.end",
        extra={
            "extra": {
                "session_id": session.id,
                "rounds": state["round"],
                "exhausted": state.get("exhausted", False),
                "history_dropped": dropped,
            }
        },
    )
    return state


def model_router(state: TurnState) -> str:
    if state.get("phase") == Phase.EXECUTING_TOOLS:
        return "tools"
    return "finalize"


def build_turn_graph(ctx: TurnContext) -> CompiledStateGraph:
    graph = StateGraph(TurnState)
    graph.add_node("model", lambda s: model_node(s, ctx))
    graph.add_node("tools", lambda s: tool_node(s, ctx))
    graph.add_node("finalize", finalize_node)
    graph.set_entry_point("model")
    graph.add_conditional_edges("model", model_router, {"tools": "tools", "finalize": "finalize"})
    graph.add_edge("tools", "model")
    graph.add_edge("finalize", END)
    return graph.compile()


def initial_state(session: Session, user_turn: Turn) -> TurnState:
    contents: List[Turn] = session.history.snapshot()
    contents.append(user_turn)
    return {
        "session": session,
        "contents": contents,
        "pending": [user_turn],
        "round": 0,
        "phase": Phase.AWAITING_MODEL,
        "response": None,
        "last_text": "",
        "final_text": None,
        "exhausted": False,
        "tool_batches": [],
    }
