"""语音合成：ElevenLabs 主合成服务 + 本地命令行兜底。

- ElevenLabsSynthesizer.synthesize(text) 返回 audio/mpeg 字节，由播放器负责播放。
- CommandSpeechEngine.speak(text) 直接通过本地引擎（默认 espeak-ng）朗读，
  合成与播放一步完成，可随时 stop()。
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from cellar_agent.domain.exceptions import NetworkError, RateLimitError, SynthesisError
from cellar_agent.infrastructure.logging.logger import logger
from .voices import VoiceCandidate, parse_espeak_voices, select_voice


DEFAULT_VOICE_SETTINGS: Dict[str, Any] = {
    "stability": 0.35,
    "similarity_boost": 0.8,
    "style": 0.25,
    "use_speaker_boost": True,
}


def build_tts_body(text: str, model_id: str, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """合并默认音色参数；speed 放在顶层而不是 voice_settings 里。"""
    merged = {**DEFAULT_VOICE_SETTINGS, **(overrides or {})}
    speed = merged.pop("speed", None)
    body: Dict[str, Any] = {"text": text, "model_id": model_id, "voice_settings": merged}
    if speed is not None:
        body["speed"] = speed
    return body


class ElevenLabsSynthesizer:
    name = "elevenlabs"

    def __init__(self, settings, voice_id: Optional[str] = None, voice_settings: Optional[Dict[str, Any]] = None):
        self._settings = settings
        self._voice_id = voice_id or settings.elevenlabs_voice_id
        self._voice_settings = voice_settings

    def validate(self, text: str) -> None:
        if not text or not text.strip():
            raise SynthesisError(code="TTS_MISSING_TEXT", message="Missing text")
        limit = self._settings.tts_max_text_chars
        if len(text) > limit:
            raise SynthesisError(code="TTS_TEXT_TOO_LONG", message=f"Text too long (max {limit} chars)")
        if not self._settings.elevenlabs_api_key:
            raise SynthesisError(code="MISSING_API_KEY", message="ELEVENLABS_API_KEY not set")

    async def synthesize(self, text: str) -> bytes:
        self.validate(text)
        url = f"{self._settings.elevenlabs_base_url.rstrip('/')}/text-to-speech/{self._voice_id}"
        body = build_tts_body(text, self._settings.tts_model_id, self._voice_settings)
        try:
            async with httpx.AsyncClient(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = await client.post(
                    url,
                    json=body,
                    headers={
                        "xi-api-key": self._settings.elevenlabs_api_key,
                        "Content-Type": "application/json",
                        "Accept": "audio/mpeg",
                    },
                )
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="ElevenLabs quota exceeded", http_status=429)
        if resp.status_code >= 400:
            raise SynthesisError(code="TTS_API_ERROR", message=resp.text, http_status=resp.status_code)
        if not resp.content:
            raise SynthesisError(code="TTS_EMPTY_AUDIO", message="ElevenLabs returned no audio")
        return resp.content


class CommandSpeechEngine:
    """本地命令行合成引擎，同一时间只朗读一段。"""

    def __init__(self, settings, voice: Optional[str] = None):
        self._settings = settings
        self._command = settings.fallback_tts_command
        self._voice = voice
        self._voice_resolved = voice is not None
        self._proc: Optional[asyncio.subprocess.Process] = None

    @property
    def name(self) -> str:
        return self._command

    async def list_voices(self) -> List[VoiceCandidate]:
        try:
            proc = await asyncio.create_subprocess_exec(
                self._command, "--voices",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise SynthesisError(code="TTS_ENGINE_MISSING", message=str(e))
        stdout, _ = await proc.communicate()
        return parse_espeak_voices(stdout.decode("utf-8", errors="replace"))

    async def resolve_voice(self) -> Optional[str]:
        if not self._voice_resolved:
            language = self._settings.fallback_voice_language
            try:
                best = select_voice(await self.list_voices(), language=language, locale=f"{language}-{language}")
            except SynthesisError as exc:
                logger.warning("Fallback voice listing failed", extra={"extra": {"error": exc.message}})
                best = None
            self._voice = best.lang if best else None
            self._voice_resolved = True
        return self._voice

    async def speak(self, text: str) -> None:
        voice = await self.resolve_voice()
        args = [self._command, "-s", str(self._settings.fallback_tts_rate)]
        if voice:
            args += ["-v", voice]
        args.append(text)
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise SynthesisError(code="TTS_ENGINE_MISSING", message=str(e))
        self._proc = proc
        try:
            code = await proc.wait()
        finally:
            if self._proc is proc:
                self._proc = None
        # 被 stop() 终止时返回码为负数，不视为错误
        if code > 0:
            raise SynthesisError(code="TTS_ENGINE_FAILED", message=f"{self._command} exited with {code}")

    async def stop(self) -> None:
        proc = self._proc
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(proc.wait(), timeout=1.0)
        except asyncio.TimeoutError:
            proc.kill()
