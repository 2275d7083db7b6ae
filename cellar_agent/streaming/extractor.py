"""流式 JSON 对象提取。

模型以文本片段的形式流式输出若干个拼接在一起的顶层 JSON 对象，
片段边界可能落在任意位置（包括字符串内部、转义序列中间）。
本模块按字符跟踪花括号深度与字符串/转义状态，每当深度回到 0
就切出一个完整对象并立即解析输出。

- 解析失败的对象直接丢弃，不重试、不回填缓冲区。
- 整个流结束时若一个对象都没有成功解析，则把原始缓冲区作为一个
  fallback 负载输出一次。
- 无论结果如何，最后总是输出一个 done 事件。
"""

import json
from dataclasses import dataclass
from typing import Any, AsyncIterable, AsyncIterator, Callable, List, Literal, Optional


EventKind = Literal["object", "fallback", "done"]


@dataclass
class ExtractorEvent:
    kind: EventKind
    payload: Any = None


class StreamingObjectExtractor:
    """单次前向扫描的对象提取器，状态跨片段保留。"""

    def __init__(self) -> None:
        self._buffer: List[str] = []
        self._depth = 0
        self._in_string = False
        self._escaped = False
        self._object_start = 0
        self._emitted = 0
        self._finished = False

    @property
    def emitted_count(self) -> int:
        return self._emitted

    @property
    def buffer(self) -> str:
        return "".join(self._buffer)

    def feed(self, fragment: str) -> List[Any]:
        """喂入一个文本片段，返回本片段内完成的对象（按出现顺序）。"""
        if self._finished:
            raise RuntimeError("extractor already finished")
        objects: List[Any] = []
        for ch in fragment:
            self._buffer.append(ch)
            if self._escaped:
                self._escaped = False
                continue
            if ch == "\\":
                self._escaped = True
                continue
            if ch == '"':
                self._in_string = not self._in_string
                continue
            if self._in_string:
                continue
            if ch == "{":
                if self._depth == 0:
                    self._object_start = len(self._buffer) - 1
                self._depth += 1
            elif ch == "}":
                # 深度为 0 时的多余右括号不影响状态
                if self._depth == 0:
                    continue
                self._depth -= 1
                if self._depth == 0:
                    candidate = "".join(self._buffer[self._object_start:])
                    try:
                        obj = json.loads(candidate)
                    except json.JSONDecodeError:
                        continue
                    self._emitted += 1
                    objects.append(obj)
        return objects

    def finish(self) -> Optional[str]:
        """结束流。若从未成功输出对象，返回原始缓冲区作为 fallback。"""
        self._finished = True
        if self._emitted == 0:
            return self.buffer
        return None


async def extract_objects(
    fragments: AsyncIterable[str],
    on_event: Optional[Callable[[ExtractorEvent], None]] = None,
) -> AsyncIterator[ExtractorEvent]:
    """把异步文本片段流转换为提取事件流。

    on_event 回调在每个事件产出前同步调用，适合驱动进度 UI。
    """

    extractor = StreamingObjectExtractor()

    def _emit(event: ExtractorEvent) -> ExtractorEvent:
        if on_event is not None:
            on_event(event)
        return event

    async for fragment in fragments:
        for obj in extractor.feed(fragment):
            yield _emit(ExtractorEvent(kind="object", payload=obj))
    raw = extractor.finish()
    if raw is not None:
        yield _emit(ExtractorEvent(kind="fallback", payload=raw))
    yield _emit(ExtractorEvent(kind="done"))
