import asyncio

from cellar_agent.speech.pipeline import SpeechPipeline


class FakePrimary:
    """fail_on / slow_on 为 1 起始的调用序号。"""

    def __init__(self, log, fail_on=None, slow_on=None):
        self.log = log
        self.calls = []
        self.fail_on = fail_on
        self.slow_on = slow_on

    async def synthesize(self, text):
        self.calls.append(text)
        n = len(self.calls)
        if n == self.slow_on:
            await asyncio.sleep(5)
        if n == self.fail_on:
            raise RuntimeError("tts 503")
        return text.encode("utf-8")


class FakePlayer:
    """block 为 True 时每段都阻塞；block_on 只阻塞指定文本的那一段。"""

    def __init__(self, log, block=False, block_on=None):
        self.log = log
        self.block = block
        self.block_on = block_on
        self.played = []
        self._gate = asyncio.Event()

    async def play(self, audio):
        text = audio.decode("utf-8")
        self.played.append(text)
        self.log.append(("play", text))
        if self.block or text == self.block_on:
            await self._gate.wait()

    async def stop(self):
        self.log.append(("stop",))


class FakeFallback:
    def __init__(self, log, block=False, fail_text=None):
        self.log = log
        self.block = block
        self.fail_text = fail_text
        self.spoken = []
        self._gate = asyncio.Event()

    async def speak(self, text):
        self.log.append(("fallback", text))
        if text == self.fail_text:
            raise RuntimeError("espeak crashed")
        self.spoken.append(text)
        if self.block:
            await self._gate.wait()

    async def stop(self):
        self.log.append(("fallback-stop",))


TEXT = "Un! Deux! Trois!"


def test_primary_plays_every_chunk_in_order():
    async def run():
        log = []
        primary, player, fallback = FakePrimary(log), FakePlayer(log), FakeFallback(log)
        handle = await SpeechPipeline(primary, fallback, player).speak(TEXT)
        await handle.wait()
        return handle, player, fallback

    handle, player, fallback = asyncio.run(run())
    assert player.played == ["Un!", "Deux!", "Trois!"]
    assert fallback.spoken == []
    assert handle.primary_chunks == [0, 1, 2]
    assert not handle.used_fallback
    assert handle.done


def test_failure_on_second_chunk_switches_rest_to_fallback():
    async def run():
        log = []
        primary = FakePrimary(log, fail_on=2)
        player, fallback = FakePlayer(log), FakeFallback(log)
        handle = await SpeechPipeline(primary, fallback, player).speak(TEXT)
        await handle.wait()
        return handle, primary, player, fallback

    handle, primary, player, fallback = asyncio.run(run())
    assert primary.calls == ["Un!", "Deux!"]
    assert player.played == ["Un!"]
    assert fallback.spoken == ["Deux!", "Trois!"]
    assert handle.used_fallback
    assert handle.primary_chunks == [0]
    assert handle.fallback_chunks == [1, 2]


def test_first_chunk_timeout_uses_fallback_for_everything():
    async def run():
        log = []
        primary = FakePrimary(log, slow_on=1)
        player, fallback = FakePlayer(log), FakeFallback(log)
        pipeline = SpeechPipeline(primary, fallback, player, first_chunk_timeout=0.05, chunk_timeout=0.05)
        handle = await pipeline.speak(TEXT)
        await handle.wait()
        return handle, primary, player, fallback

    handle, primary, player, fallback = asyncio.run(run())
    assert primary.calls == ["Un!"]
    assert player.played == []
    assert fallback.spoken == ["Un!", "Deux!", "Trois!"]
    assert handle.fallback_chunks == [0, 1, 2]


def test_without_primary_everything_goes_to_fallback():
    async def run():
        log = []
        player, fallback = FakePlayer(log), FakeFallback(log)
        handle = await SpeechPipeline(None, fallback, player).speak(TEXT)
        await handle.wait()
        return handle, player, fallback

    handle, player, fallback = asyncio.run(run())
    assert player.played == []
    assert fallback.spoken == ["Un!", "Deux!", "Trois!"]
    assert handle.used_fallback


def test_fallback_error_skips_chunk_and_continues():
    async def run():
        log = []
        fallback = FakeFallback(log, fail_text="Deux!")
        handle = await SpeechPipeline(None, fallback, FakePlayer(log)).speak(TEXT)
        await handle.wait()
        return handle, fallback

    handle, fallback = asyncio.run(run())
    assert fallback.spoken == ["Un!", "Trois!"]
    assert handle.fallback_chunks == [0, 2]


def test_new_utterance_interrupts_the_previous_one():
    async def run():
        log = []
        primary = FakePrimary(log)
        player, fallback = FakePlayer(log, block_on="Deux!"), FakeFallback(log)
        pipeline = SpeechPipeline(primary, fallback, player)

        first = await pipeline.speak(TEXT)
        while "Deux!" not in player.played:
            await asyncio.sleep(0.01)
        second = await pipeline.speak("Quatre!")
        await second.wait()
        return log, first, second, pipeline, player, fallback

    log, first, second, pipeline, player, fallback = asyncio.run(run())
    assert first.cancelled
    assert first.done
    assert pipeline.active is second
    assert first.primary_chunks == [0]
    # 第二段播放中被打断：第一段不会重播，第三段不会开始
    assert player.played == ["Un!", "Deux!", "Quatre!"]
    assert player.played.count("Un!") == 1
    assert ("play", "Trois!") not in log
    assert log.index(("play", "Deux!")) < log.index(("stop",)) < log.index(("play", "Quatre!"))
    assert fallback.spoken == []


class SlowStopPlayer:
    """stop() 需要一点时间；记录同时处于播放中的段数。"""

    def __init__(self):
        self.playing = 0
        self.max_playing = 0
        self.played = []
        self._gate = asyncio.Event()

    async def play(self, audio):
        self.played.append(audio.decode("utf-8"))
        self.playing += 1
        self.max_playing = max(self.max_playing, self.playing)
        try:
            await self._gate.wait()
        finally:
            self.playing -= 1

    async def stop(self):
        await asyncio.sleep(0.01)


def test_concurrent_speak_calls_leave_one_live_utterance():
    async def run():
        log = []
        player = SlowStopPlayer()
        pipeline = SpeechPipeline(FakePrimary(log), FakeFallback(log), player)
        zero = await pipeline.speak("Zero!")
        while not player.played:
            await asyncio.sleep(0.01)
        alpha, bravo = await asyncio.gather(pipeline.speak("Alpha!"), pipeline.speak("Bravo!"))
        while "Bravo!" not in player.played:
            await asyncio.sleep(0.01)
        live = [h for h in (zero, alpha, bravo) if not h.cancelled]
        active = pipeline.active
        max_playing = player.max_playing
        await pipeline.stop()
        return zero, alpha, bravo, live, active, max_playing, player

    zero, alpha, bravo, live, active, max_playing, player = asyncio.run(run())
    assert live == [bravo]
    assert active is bravo
    assert zero.cancelled
    assert alpha.cancelled
    assert max_playing == 1
    assert player.played[0] == "Zero!"
    assert player.played[-1] == "Bravo!"


def test_stop_empties_fallback_queue():
    async def run():
        log = []
        fallback = FakeFallback(log, block=True)
        pipeline = SpeechPipeline(None, fallback, FakePlayer(log))
        handle = await pipeline.speak(TEXT)
        while not fallback.spoken:
            await asyncio.sleep(0.01)
        await pipeline.stop()
        return handle, fallback, pipeline, log

    handle, fallback, pipeline, log = asyncio.run(run())
    assert handle.cancelled
    assert handle.queue.empty()
    assert fallback.spoken == ["Un!"]
    assert handle.fallback_chunks == []
    assert ("fallback-stop",) in log
    assert pipeline.active is None


def test_empty_text_produces_idle_handle():
    async def run():
        log = []
        handle = await SpeechPipeline(FakePrimary(log), FakeFallback(log), FakePlayer(log)).speak("")
        await handle.wait()
        return handle, log

    handle, log = asyncio.run(run())
    assert handle.done
    assert handle.chunks == []
    assert log == []
