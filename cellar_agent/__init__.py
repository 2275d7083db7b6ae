"""Cellar Agent 顶层包。

该包提供酒窖侍酒师对话 Agent 的核心实现，
包括配置加载、领域模型、Gemini Provider 适配、酒窖工具、
多轮工具调用编排、结构化流式输出、语音输出流水线与本地库存存储。
"""

from cellar_agent.agents.sommelier_agent import SommelierAgent
from cellar_agent.api.service import run_chat, run_voice_chat, stream_structured

__all__ = ["SommelierAgent", "run_chat", "run_voice_chat", "stream_structured"]
