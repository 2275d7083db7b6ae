"""State definition for the per-message tool loop graph."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional, TypedDict

from cellar_agent.agents.session import Session
from cellar_agent.domain.models import ModelResponse, Turn
from cellar_agent.tools.definitions import ToolCall


class Phase(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


class TurnState(TypedDict, total=False):
    """State shared across LangGraph nodes while one user message is resolved."""

    session: Session
    # snapshot of committed history plus the in-flight turns of this message
    contents: List[Turn]
    # user turn followed by call / result turns, committed to history on finalize
    pending: List[Turn]
    round: int
    phase: Phase
    response: Optional[ModelResponse]
    last_text: str
    final_text: Optional[str]
    exhausted: bool
    tool_batches: List[List[ToolCall]]
