"""统一的对话与结果数据模型。

本模块定义了 Orchestrator 与模型 Provider 之间共享的标准数据结构：

- Part: 一个对话片段（文本 / 内联二进制 / 函数调用 / 函数结果，四选一）。
- Turn: 一轮带角色的对话（user / model / function），由若干 Part 组成。
- ModelRequest: 发给底层模型的完整请求。
- ModelResponse: 从 Provider 解析后的统一响应结果。

Provider 适配器（如 GeminiClient）只依赖这些模型，
并负责在各自 API JSON 与这些模型之间做转换。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from cellar_agent.tools.definitions import ToolCall, ToolDef


# 对话角色（与 Gemini contents[].role 对应）
Role = Literal["user", "model", "function"]


@dataclass
class InlineData:
    """内联二进制数据，例如酒标照片（base64 编码）。"""

    mime_type: str
    data: str


@dataclass
class FunctionCall:
    name: str
    args: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class FunctionResponse:
    name: str
    response: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None


@dataclass
class Part:
    """一个对话片段，四个字段中只应设置一个。"""

    text: Optional[str] = None
    inline_data: Optional[InlineData] = None
    function_call: Optional[FunctionCall] = None
    function_response: Optional[FunctionResponse] = None


@dataclass
class Turn:
    """一轮对话。历史中的 Turn 只追加、不修改。"""

    role: Role
    parts: List[Part] = field(default_factory=list)

    @classmethod
    def user(cls, text: str, image_base64: Optional[str] = None, mime_type: str = "image/jpeg") -> "Turn":
        parts = [Part(text=text)]
        if image_base64:
            parts.append(Part(inline_data=InlineData(mime_type=mime_type, data=image_base64)))
        return cls(role="user", parts=parts)

    @classmethod
    def model_text(cls, text: str) -> "Turn":
        return cls(role="model", parts=[Part(text=text)])

    @property
    def text(self) -> str:
        """拼接所有文本片段。"""
        return "".join(p.text for p in self.parts if p.text)

    @property
    def has_function_call(self) -> bool:
        return any(p.function_call is not None for p in self.parts)


@dataclass
class ModelRequest:
    """一次完整的模型调用请求。

    Orchestrator 组装历史快照后生成 ModelRequest，再交给具体 ModelClient。
    """

    model: str  # 逻辑模型名，如 "sommelier-chat"（由 registry 映射为真实模型名）
    contents: List[Turn]
    system_instruction: Optional[str] = None
    # 工具定义列表：Provider 负责转换成 functionDeclarations
    tools: Optional[List["ToolDef"]] = None


@dataclass
class ModelResponse:
    """一次模型调用的统一结果。

    - text: 模型返回的文本（可能为空）。
    - tool_calls: 模型请求的工具调用，按模型给出的顺序排列。
    - candidate_content: 模型本轮的原始 Turn。存在工具调用时，
      下一次请求必须原样回传它，模型才能识别自己先前的调用。
    - raw: 原始响应 JSON，用于调试。
    """

    text: str = ""
    tool_calls: List["ToolCall"] = field(default_factory=list)
    candidate_content: Optional[Turn] = None
    raw: Optional[dict] = None

    @property
    def can_resubmit_tools(self) -> bool:
        return bool(self.tool_calls) and self.candidate_content is not None
