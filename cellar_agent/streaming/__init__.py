"""结构化流式输出：对象提取器与 SSE 编解码。"""

from cellar_agent.streaming.extractor import ExtractorEvent, StreamingObjectExtractor, extract_objects
from cellar_agent.streaming.sse import (
    DONE_FRAME,
    encode_sse,
    fallback_payload,
    is_fallback,
    iter_sse_payloads,
    sse_frames,
)

__all__ = [
    "DONE_FRAME",
    "ExtractorEvent",
    "StreamingObjectExtractor",
    "encode_sse",
    "extract_objects",
    "fallback_payload",
    "is_fallback",
    "iter_sse_payloads",
    "sse_frames",
]
