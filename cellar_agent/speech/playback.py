"""命令行音频播放器：把 audio/mpeg 字节通过 stdin 交给外部播放器。"""

import asyncio
import shlex
from typing import List, Optional

from cellar_agent.domain.exceptions import PlaybackError


class CommandAudioPlayer:
    def __init__(self, command: str):
        self._argv: List[str] = shlex.split(command)
        if not self._argv:
            raise ValueError("audio player command is empty")
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._stopped = False

    @property
    def playing(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    async def play(self, audio: bytes) -> None:
        """播放到结束为止；被 stop() 打断时正常返回。"""
        self._stopped = False
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise PlaybackError(code="PLAYER_MISSING", message=str(e))
        self._proc = proc
        try:
            await proc.communicate(input=audio)
        except (BrokenPipeError, ConnectionResetError):
            if not self._stopped:
                raise PlaybackError(code="PLAYBACK_FAILED", message="player closed its input early")
        finally:
            if self._proc is proc:
                self._proc = None
        if proc.returncode and not self._stopped:
            raise PlaybackError(code="PLAYBACK_FAILED", message=f"player exited with {proc.returncode}")

    async def stop(self) -> None:
        self._stopped = True
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
