"""语音输出：规范化、切分、主/兜底合成与可取消的播放流水线。"""

from typing import Optional

from cellar_agent.config.settings import settings
from cellar_agent.speech.pipeline import SpeechPipeline, UtteranceHandle
from cellar_agent.speech.playback import CommandAudioPlayer
from cellar_agent.speech.synthesizers import CommandSpeechEngine, ElevenLabsSynthesizer


def create_pipeline(primary: Optional[ElevenLabsSynthesizer] = None) -> SpeechPipeline:
    """按配置组装流水线；未配置 ElevenLabs 密钥时只使用本地兜底引擎。"""

    if primary is None and settings.elevenlabs_api_key:
        primary = ElevenLabsSynthesizer(settings)
    return SpeechPipeline.from_settings(
        settings,
        primary=primary,
        fallback=CommandSpeechEngine(settings),
        player=CommandAudioPlayer(settings.audio_player_command),
    )


__all__ = ["SpeechPipeline", "UtteranceHandle", "create_pipeline"]
