"""语音输出流水线。

一段回答的处理顺序：规范化 -> 切分 -> 逐段合成并播放。

- 严格串行：第 i 段播放结束后才请求第 i+1 段，保证朗读顺序。
- 每段合成与超时赛跑，首段超时更长（吸收主服务冷启动）。
- 主服务任一段失败或超时，本段及之后的所有分片都转入兜底队列，
  由单一消费者循环交给本地引擎朗读；已由主服务播放过的分片不会重读。
- 同一时间只有一个 UtteranceHandle；新的 speak() 先取消旧的
  （停止播放、取消网络任务、清空队列），两段语音不会同时出声。
"""

import asyncio
from typing import List, Optional, Protocol, Set
from uuid import uuid4

from cellar_agent.infrastructure.logging.logger import logger
from .chunker import MAX_CHUNK_CHARS, SENTENCE_THRESHOLD, SpeechChunk, chunk_text
from .formatter import format_for_speech


FIRST_CHUNK_TIMEOUT = 8.0
CHUNK_TIMEOUT = 5.0


class Synthesizer(Protocol):
    async def synthesize(self, text: str) -> bytes:
        ...


class AudioPlayer(Protocol):
    async def play(self, audio: bytes) -> None:
        ...

    async def stop(self) -> None:
        ...


class FallbackEngine(Protocol):
    async def speak(self, text: str) -> None:
        ...

    async def stop(self) -> None:
        ...


def _consume_result(task: "asyncio.Task") -> None:
    # 超时后被放弃的合成任务：取走结果，避免 "exception was never retrieved"
    if not task.cancelled():
        task.exception()


class UtteranceHandle:
    """一段语音的取消作用域：网络任务、播放器、兜底队列。"""

    def __init__(self, chunks: List[SpeechChunk], player: Optional[AudioPlayer], fallback: Optional[FallbackEngine]):
        self.id = f"utt-{uuid4().hex[:12]}"
        self.chunks = chunks
        self.queue: "asyncio.Queue[SpeechChunk]" = asyncio.Queue()
        self.primary_chunks: List[int] = []
        self.fallback_chunks: List[int] = []
        self.used_fallback = False
        self._player = player
        self._fallback = fallback
        self._cancelled = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[asyncio.Task] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    @property
    def done(self) -> bool:
        return self._runner is None or self._runner.done()

    def track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start(self, runner: asyncio.Task) -> None:
        self._runner = self.track(runner)

    async def wait(self) -> None:
        """等待本段语音自然结束或被取消。"""
        if self._runner is not None:
            await asyncio.gather(self._runner, return_exceptions=True)

    async def cancel(self) -> None:
        if self.cancelled:
            return
        self._cancelled.set()
        if self._player is not None:
            await self._player.stop()
        if self._fallback is not None:
            await self._fallback.stop()
        while not self.queue.empty():
            self.queue.get_nowait()
        current = asyncio.current_task()
        pending = [t for t in self._tasks if t is not current and not t.done()]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


class SpeechPipeline:
    def __init__(
        self,
        primary: Optional[Synthesizer],
        fallback: Optional[FallbackEngine],
        player: Optional[AudioPlayer],
        first_chunk_timeout: float = FIRST_CHUNK_TIMEOUT,
        chunk_timeout: float = CHUNK_TIMEOUT,
        sentence_threshold: int = SENTENCE_THRESHOLD,
        max_chunk_chars: int = MAX_CHUNK_CHARS,
    ):
        self._primary = primary
        self._fallback = fallback
        self._player = player
        self._first_chunk_timeout = first_chunk_timeout
        self._chunk_timeout = chunk_timeout
        self._sentence_threshold = sentence_threshold
        self._max_chunk_chars = max_chunk_chars
        self._active: Optional[UtteranceHandle] = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings, primary, fallback, player) -> "SpeechPipeline":
        return cls(
            primary=primary,
            fallback=fallback,
            player=player,
            first_chunk_timeout=settings.tts_first_chunk_timeout,
            chunk_timeout=settings.tts_chunk_timeout,
            sentence_threshold=settings.tts_sentence_threshold,
            max_chunk_chars=settings.tts_max_chunk_chars,
        )

    @property
    def active(self) -> Optional[UtteranceHandle]:
        return self._active

    async def speak(self, text: str) -> UtteranceHandle:
        """开始朗读一段文本，返回其取消句柄；之前的语音会先被取消。"""
        # 取消旧句柄与登记新句柄必须在同一把锁内完成，并发的 speak() 依次排队
        async with self._lock:
            await self._retire_active()
            chunks = chunk_text(format_for_speech(text), self._sentence_threshold, self._max_chunk_chars)
            handle = UtteranceHandle(chunks, self._player, self._fallback)
            self._active = handle
            if chunks:
                handle.start(asyncio.create_task(self._run(handle)))
            return handle

    async def stop(self) -> None:
        async with self._lock:
            await self._retire_active()

    async def _retire_active(self) -> None:
        handle, self._active = self._active, None
        if handle is not None:
            await handle.cancel()

    async def _run(self, handle: UtteranceHandle) -> None:
        if self._primary is None:
            self._switch_to_fallback(handle, 0, "no primary synthesizer")
        else:
            for chunk in handle.chunks:
                if handle.cancelled:
                    return
                failure = await self._play_primary(handle, chunk)
                if handle.cancelled:
                    return
                if failure is None:
                    handle.primary_chunks.append(chunk.index)
                    continue
                self._switch_to_fallback(handle, chunk.index, failure)
                break
        if handle.used_fallback:
            await self._drain_fallback(handle)

    async def _play_primary(self, handle: UtteranceHandle, chunk: SpeechChunk) -> Optional[str]:
        """合成并播放一段；成功返回 None，否则返回失败原因。"""
        timeout = self._first_chunk_timeout if chunk.index == 0 else self._chunk_timeout
        synth = handle.track(asyncio.create_task(self._primary.synthesize(chunk.text)))
        done, _ = await asyncio.wait({synth}, timeout=timeout)
        if synth not in done:
            synth.add_done_callback(_consume_result)
            return f"timeout after {timeout}s"
        if synth.cancelled():
            return "cancelled"
        exc = synth.exception()
        if exc is not None:
            return repr(exc)
        if handle.cancelled:
            return None
        if self._player is None:
            return "no audio player"
        try:
            await self._player.play(synth.result())
        except Exception as exc:
            return repr(exc)
        return None

    def _switch_to_fallback(self, handle: UtteranceHandle, start: int, reason: str) -> None:
        handle.used_fallback = True
        for chunk in handle.chunks[start:]:
            handle.queue.put_nowait(chunk)
        logger.warning(
            "Primary speech synthesis failed, switching to fallback",
            extra={"extra": {"utterance_id": handle.id, "chunk": start, "reason": reason}},
        )

    async def _drain_fallback(self, handle: UtteranceHandle) -> None:
        while not handle.queue.empty():
            if handle.cancelled:
                return
            chunk = handle.queue.get_nowait()
            if self._fallback is None:
                continue
            try:
                await self._fallback.speak(chunk.text)
            except Exception as exc:
                logger.warning(
                    "Fallback speech failed",
                    extra={"extra": {"utterance_id": handle.id, "chunk": chunk.index, "error": repr(exc)}},
                )
                continue
            if handle.cancelled:
                return
            handle.fallback_chunks.append(chunk.index)
