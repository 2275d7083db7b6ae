"""侍酒师 Agent 的专用包装。

把会话表、本地库存、酒窖工具、系统提示词与 Orchestrator 组装在一起，
对外只暴露按 session_id 聊天的便捷接口。
"""

from typing import Optional, Tuple

from cellar_agent.agents.orchestrator import Orchestrator, OrchestratorResult
from cellar_agent.agents.session import Session, SessionStore
from cellar_agent.config.settings import settings
from cellar_agent.infrastructure.storage.json_store import JsonInventoryStore
from cellar_agent.prompts import build_system_prompt
from cellar_agent.providers.base import InventorySearch, ModelClient
from cellar_agent.tools.cellar_tools import register_cellar_tools
from cellar_agent.tools.executor import ToolRegistry


def _session_prompt(session: Session) -> str:
    return build_system_prompt(session.inventory_context, session.staged)


class SommelierAgent:
    """侍酒师 Agent 的便捷包装类。"""

    def __init__(
        self,
        provider_client: ModelClient,
        store: Optional[JsonInventoryStore] = None,
        search: Optional[InventorySearch] = None,
        sessions: Optional[SessionStore] = None,
        model_name: Optional[str] = None,
        max_rounds: Optional[int] = None,
    ):
        """初始化 Sommelier Agent。

        Args:
            provider_client: 模型客户端
            store: 本地库存（commit_wine 写入端），默认取 settings.storage_root
            search: 库存检索后端（可选），为空时使用本地库存
            sessions: 会话表（可选）
            model_name: 逻辑模型名（可选）
            max_rounds: 单条消息的最大工具轮数（可选）
        """
        self._store = store or JsonInventoryStore(root=settings.storage_root)
        self._sessions = sessions or SessionStore()
        self._registry = ToolRegistry()
        register_cellar_tools(self._registry, self._store, search if search is not None else self._store)
        self._orchestrator = Orchestrator(
            client=provider_client,
            registry=self._registry,
            model=model_name,
            max_rounds=max_rounds,
            system_prompt=_session_prompt,
        )

    @property
    def registry(self) -> ToolRegistry:
        return self._registry

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    def session(self, session_id: Optional[str] = None) -> Session:
        """获取（或创建）会话；新会话会先加载一次酒窖快照。"""
        existing = self._sessions.get(session_id) if session_id else None
        if existing is not None:
            return existing
        session = self._sessions.get_or_create(session_id)
        self.refresh_cellar(session)
        return session

    def refresh_cellar(self, session: Session) -> None:
        session.load_cellar(self._store.list_wines())

    def chat(
        self,
        user_input: str,
        session_id: Optional[str] = None,
        image_base64: Optional[str] = None,
        trace_id: Optional[str] = None,
    ) -> Tuple[Session, OrchestratorResult]:
        """发起对话。

        Returns:
            (会话, 编排结果) 的元组
        """
        session = self.session(session_id)
        result = self._orchestrator.handle_message(session, user_input, image_base64=image_base64, trace_id=trace_id)
        return session, result
