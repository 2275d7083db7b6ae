"""会话状态。

每个用户会话持有自己的对话历史、暂存草稿与酒窖快照，
工具处理函数通过显式传入的 Session 读写这些状态。
"""

from dataclasses import dataclass, field
from threading import Lock
from typing import Dict, List, Optional
from uuid import uuid4

from cellar_agent.config.settings import settings
from cellar_agent.domain.history import TurnHistory
from cellar_agent.domain.wine import Wine, WineDraft


@dataclass
class Session:
    id: str = field(default_factory=lambda: f"sess-{uuid4().hex}")
    history: TurnHistory = field(default_factory=lambda: TurnHistory(settings.history_window))
    staged: Optional[WineDraft] = None
    # 最近一次加载的酒窖快照，远程检索不可用时用于本地过滤
    cellar: List[Wine] = field(default_factory=list)
    inventory_context: str = ""

    def stage(self, draft: WineDraft) -> None:
        self.staged = draft

    def clear_staged(self) -> None:
        self.staged = None

    def load_cellar(self, wines: List[Wine]) -> None:
        self.cellar = list(wines)
        self.inventory_context = summarize_cellar(self.cellar)


def summarize_cellar(wines: List[Wine]) -> str:
    """生成写入系统提示词的库存概要。"""
    if not wines:
        return "The cellar is currently empty."
    bottles = sum(w.quantity for w in wines)
    lines = [f"Cellar holds {len(wines)} wines ({bottles} bottles)."]
    for w in wines[:30]:
        label = " ".join(str(v) for v in (w.producer, w.name, w.vintage) if v)
        extra = ", ".join(str(v) for v in (w.type, w.region, w.maturity) if v)
        lines.append(f"- [{w.id}] {label}" + (f" ({extra})" if extra else "") + f" x{w.quantity}")
    if len(wines) > 30:
        lines.append(f"... and {len(wines) - 30} more.")
    return "\n".join(lines)


class SessionStore:
    """进程内会话表。"""

    def __init__(self) -> None:
        self._sessions: Dict[str, Session] = {}
        self._lock = Lock()

    def get_or_create(self, session_id: Optional[str] = None) -> Session:
        with self._lock:
            if session_id and session_id in self._sessions:
                return self._sessions[session_id]
            session = Session(id=session_id) if session_id else Session()
            self._sessions[session.id] = session
            return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def drop(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)
