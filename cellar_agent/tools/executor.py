"""工具注册与分发。

- 按调用顺序、串行执行，保证结果顺序与调用顺序一致，
  也保证会话状态（暂存草稿）的修改是确定的。
- 参数在进入处理函数前由对应的 pydantic 变体校验。
- 校验失败、未知工具、处理函数异常都转成结果文本返回，不向上抛出，
  这样模型可以在下一轮自行决定如何向用户解释。
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, Union, TYPE_CHECKING

from pydantic import BaseModel, TypeAdapter, ValidationError as PydanticValidationError

from cellar_agent.infrastructure.logging.logger import logger
from .definitions import ToolCall, ToolDef, ToolResult

if TYPE_CHECKING:
    from cellar_agent.agents.session import Session


ToolFunc = Callable[[Any, "Session"], str]
# 单个模型类，或以 `tool` 字段为标签的联合类型适配器
ParamsModel = Union[Type[BaseModel], TypeAdapter]


@dataclass
class RegisteredTool:
    name: str
    handler: ToolFunc
    params: Optional[ParamsModel] = None
    definition: Optional[ToolDef] = None


class ToolRegistry:
    def __init__(self) -> None:
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        name: str,
        handler: ToolFunc,
        params: Optional[ParamsModel] = None,
        definition: Optional[ToolDef] = None,
    ) -> None:
        """注册（或覆盖）一个工具。params 为空时处理函数收到原始参数 dict。"""
        self._tools[name] = RegisteredTool(name=name, handler=handler, params=params, definition=definition)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDef]:
        return [t.definition for t in self._tools.values() if t.definition is not None]

    def dispatch(self, calls: List[ToolCall], session: "Session") -> List[ToolResult]:
        return [self.execute(call, session) for call in calls]

    def execute(self, call: ToolCall, session: "Session") -> ToolResult:
        tool = self._tools.get(call.name)
        if tool is None:
            return ToolResult(call_id=call.id, name=call.name, content="Error: Tool not registered")

        if tool.params is not None:
            try:
                args: Any = _validate(tool.params, call.name, call.arguments or {})
            except PydanticValidationError as exc:
                problems = "; ".join(
                    f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}" for err in exc.errors()
                )
                logger.warning(
                    "Tool arguments rejected",
                    extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "errors": problems}},
                )
                return ToolResult(
                    call_id=call.id,
                    name=call.name,
                    content=f"Error: invalid arguments for {call.name} ({problems})",
                )
        else:
            args = dict(call.arguments or {})

        try:
            content = tool.handler(args, session)
        except Exception as exc:
            logger.error(
                "Tool execution failed",
                extra={"extra": {"tool_name": call.name, "tool_call_id": call.id, "error": str(exc)}},
            )
            content = f"Error: {exc}"
        return ToolResult(call_id=call.id, name=call.name, content=content)


def _validate(params: ParamsModel, name: str, raw: Dict[str, Any]) -> Any:
    if isinstance(params, TypeAdapter):
        return params.validate_python({**raw, "tool": name})
    return params.model_validate(raw)
