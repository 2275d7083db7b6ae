"""多轮工具调用编排核心模块。

一条用户消息的处理流程：

1. 组装 user 轮次（文本 + 可选酒标图片 + 价格/数量提示）。
2. 交给 LangGraph 状态机循环：模型 -> 工具 -> 模型 ...，直到模型给出最终文本，
   或达到最大工具轮数。
3. 最终把 user 轮次、各轮调用/结果轮次、最终回答依次写入历史，并裁剪窗口。

配额/限流错误只返回一句角色化的致歉，不重试，也不写入历史。
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from cellar_agent.agents.session import Session
from cellar_agent.config.settings import settings
from cellar_agent.domain.exceptions import RateLimitError
from cellar_agent.domain.models import Part, Turn
from cellar_agent.flows.graph import TurnContext, build_turn_graph, initial_state
from cellar_agent.infrastructure.logging.logger import logger
from cellar_agent.providers.base import ModelClient
from cellar_agent.tools.definitions import ToolCall
from cellar_agent.tools.executor import ToolRegistry


QUOTA_APOLOGY = (
    "Ah, pardonnez-moi! The cellar door is a little crowded at the moment and I must catch my breath. "
    "Please ask me again in a minute, s'il vous plaît."
)
DEFAULT_IMAGE_PROMPT = "Analyze this label."

_PRICE_RE = re.compile(r"\$(\d+(?:\.\d{2})?)")
_QTY_RE = re.compile(r"(\d+)\s*bottles?", re.IGNORECASE)


@dataclass
class OrchestratorResult:
    text: str
    rounds: int = 0
    exhausted: bool = False
    rate_limited: bool = False
    tool_calls: List[ToolCall] = field(default_factory=list)


def purchase_hint(text: str) -> Optional[str]:
    """从用户文本中提取价格/数量，生成附加给模型的系统提示片段。"""

    price_match = _PRICE_RE.search(text or "")
    qty_match = _QTY_RE.search(text or "")
    if not price_match and not qty_match:
        return None
    price = float(price_match.group(1)) if price_match else None
    qty = int(qty_match.group(1)) if qty_match else None
    return f"[System Note: User provided potential values - Price: {price}, Qty: {qty}]"


def build_user_turn(text: str, image_base64: Optional[str] = None) -> Turn:
    turn = Turn.user(text or DEFAULT_IMAGE_PROMPT, image_base64=image_base64)
    hint = purchase_hint(text)
    if hint:
        turn.parts.append(Part(text=hint))
    return turn


class Orchestrator:
    def __init__(
        self,
        client: ModelClient,
        registry: ToolRegistry,
        model: Optional[str] = None,
        max_rounds: Optional[int] = None,
        system_prompt: Optional[Callable[[Session], str]] = None,
    ):
        rounds = max_rounds if max_rounds is not None else settings.max_tool_rounds
        if rounds < 1:
            raise ValueError("max_rounds must be >= 1")
        self._client = client
        self._registry = registry
        self._ctx = TurnContext(
            client=client,
            registry=registry,
            model=model or settings.default_model,
            max_rounds=rounds,
            system_prompt=system_prompt,
        )
        self._graph = build_turn_graph(self._ctx)

    @property
    def max_rounds(self) -> int:
        return self._ctx.max_rounds

    def handle_message(
        self,
        session: Session,
        text: str,
        image_base64: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> OrchestratorResult:
        """处理一条用户消息，返回最终回答。

        RateLimitError 被转换为致歉文本；其余 BusinessError 向上抛出，
        由 API 层统一处理。两种情况下本条消息都不会写入历史。
        """

        log_ctx = {
            "trace_id": trace_id or f"t-{uuid4().hex}",
            "session_id": session.id,
            "provider": getattr(self._client, "name", "unknown"),
            "model": self._ctx.model,
        }
        if not text and not image_base64:
            return OrchestratorResult(text="")

        user_turn = build_user_turn(text, image_base64)
        self._log(
            logging.INFO,
            "Handling user message",
            log_ctx,
            has_image=bool(image_base64),
            history_turns=len(session.history),
        )
        try:
            final = self._graph.invoke(
                initial_state(session, user_turn),
                config={"recursion_limit": 2 * self._ctx.max_rounds + 4},
            )
        except RateLimitError as exc:
            self._log(logging.WARNING, "Model quota exceeded", log_ctx, error=exc.message)
            return OrchestratorResult(text=QUOTA_APOLOGY, rate_limited=True)

        calls = [c for batch in final.get("tool_batches", []) for c in batch]
        result = OrchestratorResult(
            text=final.get("final_text") or "",
            rounds=final.get("round", 0),
            exhausted=bool(final.get("exhausted")),
            tool_calls=calls,
        )
        self._log(
            logging.INFO,
            "User message resolved",
            log_ctx,
            rounds=result.rounds,
            exhausted=result.exhausted,
            tools=[c.name for c in calls],
            history_turns=len(session.history),
        )
        return result

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
