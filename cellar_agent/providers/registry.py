"""Provider 与模型配置。

本模块将“逻辑模型名”与“具体厂商模型名”解耦：

- 逻辑名（logical_name）：在代码里使用的统一名称，例如 "sommelier-chat"。
- provider_model：代理服务实际转发的模型 ID，例如 "gemini-2.5-flash"。

同时维护一份允许调用的厂商模型白名单，代理服务只接受名单内的模型。"""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Mapping


@dataclass
class ModelConfig:
    """单个逻辑模型的配置。"""

    logical_name: str
    provider_model: str


@dataclass
class ProviderConfig:
    """某个 Provider 的整体配置。"""

    name: str
    base_url: str
    models: Dict[str, ModelConfig]


ALLOWED_MODELS: FrozenSet[str] = frozenset(
    {
        "gemini-3-flash-preview",
        "gemini-2.5-flash",
        "gemini-2.5-pro",
    }
)

# 单次请求 contents 的最大轮次数与请求体大小上限（字节）
MAX_CONTENTS = 50
MAX_BODY_SIZE = 2_000_000


GEMINI_CONFIG = ProviderConfig(
    name="gemini",
    base_url="http://localhost:8080",
    models={
        "sommelier-chat": ModelConfig(
            logical_name="sommelier-chat",
            provider_model="gemini-3-flash-preview",
        ),
        "sommelier-pro": ModelConfig(
            logical_name="sommelier-pro",
            provider_model="gemini-2.5-pro",
        ),
    },
)


PROVIDER_REGISTRY: Mapping[str, ProviderConfig] = {
    "gemini": GEMINI_CONFIG,
}


def get_provider_config(name: str) -> ProviderConfig:
    """根据名称获取 ProviderConfig，名称不区分大小写。"""

    key = name.lower()
    for k, cfg in PROVIDER_REGISTRY.items():
        if k.lower() == key:
            return cfg
    raise KeyError(f"Unknown provider: {name!r}")


def resolve_model(config: ProviderConfig, model: str) -> str:
    """逻辑名映射为厂商模型名；未登记的名字按厂商模型名原样返回。"""

    cfg = config.models.get(model)
    return cfg.provider_model if cfg else model
