"""Server-Sent Events 帧的编码与解析。

服务端：每个提取出的对象编码为 `data: <json>\n\n`，fallback 负载为
`{"fallback": "<原始缓冲区>"}`，最后以 `data: [DONE]\n\n` 结束。
客户端：iter_sse_payloads 逐行解析，遇到 [DONE] 即停止。
"""

import json
from typing import Any, AsyncIterable, AsyncIterator, Dict, Iterable, Iterator

from .extractor import extract_objects


DONE_FRAME = "data: [DONE]\n\n"
FALLBACK_KEY = "fallback"


def encode_sse(payload: Any) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def fallback_payload(raw: str) -> Dict[str, str]:
    return {FALLBACK_KEY: raw}


def is_fallback(payload: Any) -> bool:
    return isinstance(payload, dict) and set(payload) == {FALLBACK_KEY}


async def sse_frames(fragments: AsyncIterable[str]) -> AsyncIterator[str]:
    """把模型文本片段流转换为 SSE 帧流。"""
    async for event in extract_objects(fragments):
        if event.kind == "object":
            yield encode_sse(event.payload)
        elif event.kind == "fallback":
            yield encode_sse(fallback_payload(event.payload))
        else:
            yield DONE_FRAME


def iter_sse_payloads(lines: Iterable[str]) -> Iterator[Any]:
    """解析 SSE 文本行，产出每帧的 JSON 负载，直到 [DONE]。

    非 data 行与无法解析的帧会被跳过。
    """
    for line in lines:
        line = line.strip()
        if not line.startswith("data:"):
            continue
        data_str = line[5:].strip()
        if data_str == "[DONE]":
            return
        try:
            yield json.loads(data_str)
        except json.JSONDecodeError:
            continue
