"""Provider 抽象接口。

Orchestrator 不直接依赖具体厂商的 HTTP 接口，而是依赖此协议：

- 每个厂商实现一个 ModelClient（如 GeminiClient）。
- 负责：将 ModelRequest 转成具体 API 请求，并把响应 JSON 解析为 ModelResponse。

测试中用手写的假 Client 替换即可，不需要网络。
"""

from typing import Any, AsyncIterator, Dict, Protocol

from cellar_agent.domain.models import ModelRequest, ModelResponse


class ModelClient(Protocol):
    """支持函数调用的模型客户端协议。

    - name: Provider 名称，用于日志。
    - generate(req): 执行一次非流式调用，返回统一的 ModelResponse。
    """

    name: str

    def generate(self, req: ModelRequest) -> ModelResponse:
        ...


class StreamingModelClient(Protocol):
    name: str

    def stream_text(self, req: ModelRequest) -> AsyncIterator[str]:
        """以文本片段的形式流式返回模型输出。"""

        ...


class InventorySearch(Protocol):
    """库存检索后端：远程检索服务或本地 JSON 库存。"""

    def search(self, query: Any) -> Dict[str, Any]:
        ...
