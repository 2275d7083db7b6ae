"""对外 API 服务模块。

提供简化的函数接口供上层应用（HTTP 服务、语音前端）调用：

- run_chat: 同步文字对话。
- run_voice_chat: 语音对话，先打断正在朗读的回答，再处理新消息并朗读结果。
- stream_structured: 结构化流式输出，产出 SSE 帧。
"""

import asyncio
from typing import Any, AsyncIterator, Dict, Optional

from cellar_agent.agents.orchestrator import build_user_turn
from cellar_agent.agents.sommelier_agent import SommelierAgent
from cellar_agent.config.settings import settings
from cellar_agent.domain.exceptions import BusinessError
from cellar_agent.domain.models import ModelRequest
from cellar_agent.infrastructure.logging.logger import logger
from cellar_agent.infrastructure.storage.json_store import JsonInventoryStore
from cellar_agent.prompts import build_system_prompt
from cellar_agent.providers import create_inventory_search, create_provider
from cellar_agent.providers.base import StreamingModelClient
from cellar_agent.speech import SpeechPipeline, create_pipeline
from cellar_agent.streaming.sse import sse_frames


HICCUP_MESSAGE = "Pardonnez-moi, a slight technological hiccup in the cellar. Could you say that again?"

_agent: Optional[SommelierAgent] = None
_pipeline: Optional[SpeechPipeline] = None


def get_default_agent() -> SommelierAgent:
    """获取默认的 Sommelier Agent 实例（单例）。"""
    global _agent
    if _agent is None:
        store = JsonInventoryStore(root=settings.storage_root)
        _agent = SommelierAgent(
            provider_client=create_provider(),
            store=store,
            search=create_inventory_search(fallback=store),
        )
    return _agent


def get_speech_pipeline() -> SpeechPipeline:
    global _pipeline
    if _pipeline is None:
        _pipeline = create_pipeline()
    return _pipeline


def run_chat(
    user_input: str,
    session_id: Optional[str] = None,
    image_base64: Optional[str] = None,
    agent: Optional[SommelierAgent] = None,
) -> Dict[str, Any]:
    """运行一轮文字对话。

    Args:
        user_input: 用户输入内容
        session_id: 会话ID（可选，不提供则创建新会话）
        image_base64: 酒标照片（JPEG，base64，可选）
        agent: 指定 Agent（可选，默认使用单例）

    Returns:
        包含会话ID、回答文本、工具轮数与暂存草稿的字典
    """
    agent = agent or get_default_agent()
    try:
        session, result = agent.chat(user_input, session_id=session_id, image_base64=image_base64)
    except BusinessError as e:
        logger.error(
            f"Chat failed: {e.message}",
            extra={"extra": {"session_id": session_id, "code": e.code, "error": e.message}},
        )
        return {
            "session_id": session_id,
            "text": HICCUP_MESSAGE,
            "error": {"code": e.code, "message": e.message},
        }
    return {
        "session_id": session.id,
        "text": result.text,
        "rounds": result.rounds,
        "exhausted": result.exhausted,
        "rate_limited": result.rate_limited,
        "tools": [c.name for c in result.tool_calls],
        "staged": session.staged.describe() if session.staged else None,
    }


async def run_voice_chat(
    user_input: str,
    session_id: Optional[str] = None,
    image_base64: Optional[str] = None,
    agent: Optional[SommelierAgent] = None,
    pipeline: Optional[SpeechPipeline] = None,
) -> Dict[str, Any]:
    """语音对话：新输入到达即打断当前朗读，再处理消息并开始朗读回答。

    返回值与 run_chat 相同，另含 utterance_id；朗读在后台进行。
    """
    pipeline = pipeline or get_speech_pipeline()
    await pipeline.stop()
    response = await asyncio.to_thread(run_chat, user_input, session_id, image_base64, agent)
    handle = await pipeline.speak(response["text"])
    response["utterance_id"] = handle.id
    return response


async def stream_structured(
    user_input: str,
    session_id: Optional[str] = None,
    agent: Optional[SommelierAgent] = None,
    client: Optional[StreamingModelClient] = None,
) -> AsyncIterator[str]:
    """以 SSE 帧的形式流式返回模型输出中的 JSON 对象。

    不走工具循环，也不写入历史；适合酒单解析等只需结构化结果的场景。
    """
    agent = agent or get_default_agent()
    client = client or create_provider()
    session = agent.session(session_id)
    req = ModelRequest(
        model=settings.default_model,
        contents=session.history.snapshot() + [build_user_turn(user_input)],
        system_instruction=build_system_prompt(session.inventory_context, session.staged),
    )
    async for frame in sse_frames(client.stream_text(req)):
        yield frame
