"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表暴露给模型（ToolDef / ToolParam）。
- 在 Orchestrator 中保存和执行模型触发的工具调用（ToolCall / ToolResult）。
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass
class ToolDef:
    """一个可供模型调用的工具定义。"""

    name: str
    description: str
    params: Dict[str, ToolParam]


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。

    round 为当前用户消息内的轮次（从 1 开始），由 Orchestrator 在分发前填写。
    """

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    round: int = 0


@dataclass
class ToolResult:
    """工具执行结果（文本形式），与 ToolCall 按位置一一对应。"""

    call_id: str
    name: str
    content: str
