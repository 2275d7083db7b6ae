"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置。
优先级：构造参数 > 环境变量 > .env > config.yaml > secrets 目录。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("CELLAR_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
        Path(__file__).resolve().parents[1] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class Settings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- 模型 Provider ----
    default_provider: str = Field(default="gemini", description="默认使用的 Provider 名称")
    default_model: str = Field(
        default="sommelier-chat",
        description="逻辑模型名，由 registry 映射为具体厂商模型",
    )
    gemini_api_key: Optional[str] = Field(default=None, description="Gemini 代理/API 密钥")
    gemini_base_url: str = Field(
        default="http://localhost:8080",
        description="Gemini 代理服务基础 URL（POST {base}/gemini）",
    )
    http_timeout: float = Field(default=30.0, ge=1.0, description="HTTP 超时时间（秒）")

    # ---- 对话 ----
    history_window: int = Field(
        default=5,
        ge=1,
        le=50,
        description="历史窗口大小，按 user 轮次计数",
    )
    max_tool_rounds: int = Field(
        default=5,
        ge=1,
        le=20,
        description="单条用户消息内工具调用最大轮数（硬上限 20）",
    )

    # ---- 酒窖库存 ----
    storage_root: str = Field(default=".storage", description="本地库存存储根目录")
    inventory_search_url: Optional[str] = Field(
        default=None,
        description="远程库存检索接口；为空时直接使用本地 JSON 库存",
    )
    query_default_limit: int = Field(default=10, ge=1, le=20, description="检索默认返回条数")
    query_max_limit: int = Field(default=20, ge=1, le=100, description="检索最大返回条数")

    # ---- 语音输出 ----
    elevenlabs_api_key: Optional[str] = Field(default=None, description="ElevenLabs API 密钥")
    elevenlabs_voice_id: str = Field(default="EnyVcN59clJmkHKhiykg", description="默认音色 ID")
    elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io/v1", description="ElevenLabs API 基础URL")
    tts_model_id: str = Field(default="eleven_multilingual_v2", description="合成模型")
    tts_first_chunk_timeout: float = Field(default=8.0, gt=0, description="首个分片合成超时（秒）")
    tts_chunk_timeout: float = Field(default=5.0, gt=0, description="后续分片合成超时（秒）")
    tts_sentence_threshold: int = Field(default=160, ge=20, description="超过该长度的句子会被二次切分")
    tts_max_chunk_chars: int = Field(default=220, ge=20, description="二次切分后分片最大字符数")
    tts_max_text_chars: int = Field(default=2000, ge=1, description="单次合成请求的最大文本长度")
    fallback_tts_command: str = Field(default="espeak-ng", description="本地兜底合成命令")
    fallback_tts_rate: int = Field(default=200, ge=50, le=500, description="本地兜底语速（词/分钟）")
    fallback_voice_language: str = Field(default="fr", description="本地兜底音色的语言前缀")
    audio_player_command: str = Field(
        default="ffplay -nodisp -autoexit -loglevel quiet -",
        description="播放 audio/mpeg 字节流的命令，从 stdin 读取",
    )

    # ---- 日志 ----
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("gemini_api_key", "elevenlabs_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = Settings()
