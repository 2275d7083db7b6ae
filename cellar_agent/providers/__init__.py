"""LLM Provider 与外部检索服务集成层。

该包下的模块负责：
- 定义 Provider 抽象接口 (base)。
- 维护 Provider 与模型配置、模型白名单 (registry)。
- 提供具体实现 (gemini_client、inventory_client)。
"""

from typing import Optional

from cellar_agent.config.settings import settings
from cellar_agent.providers.base import InventorySearch, ModelClient
from cellar_agent.providers.gemini_client import GeminiClient
from cellar_agent.providers.inventory_client import RemoteInventoryClient
from cellar_agent.providers.registry import get_provider_config


def create_provider(name: Optional[str] = None) -> ModelClient:
    """根据名称创建 Provider 实例，默认取配置中的 provider。"""

    provider_name = (name or getattr(settings, "default_provider", "gemini")).lower()
    # 未知名称直接报错，避免静默落到错误的厂商
    get_provider_config(provider_name)
    return GeminiClient(settings)


def create_inventory_search(fallback: Optional[InventorySearch] = None) -> Optional[InventorySearch]:
    """配置了远程检索地址时返回远程客户端，否则返回传入的本地实现。"""

    if settings.inventory_search_url:
        return RemoteInventoryClient(settings)
    return fallback
