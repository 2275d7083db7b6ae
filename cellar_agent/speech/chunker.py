"""把规范化后的文本切成适合逐段合成的分片。

先按句末标点切句；过长的句子再按逗号/分号/冒号切开，
贪心地拼接成不超过上限的子分片。
"""

import re
import textwrap
from dataclasses import dataclass
from typing import List

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")
_SECONDARY_RE = re.compile(r"([,;:])")

SENTENCE_THRESHOLD = 160
MAX_CHUNK_CHARS = 220


@dataclass(frozen=True)
class SpeechChunk:
    index: int
    text: str


def split_text(text: str, threshold: int = SENTENCE_THRESHOLD, max_chars: int = MAX_CHUNK_CHARS) -> List[str]:
    pieces: List[str] = []
    sentences = _SENTENCE_RE.findall(text) or [text]
    for sentence in sentences:
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) <= threshold:
            pieces.append(sentence)
            continue
        current = ""
        for part in (p for p in _SECONDARY_RE.split(sentence) if p.strip()):
            if len(part.strip()) > max_chars:
                # 没有次级标点可切的超长片段按空白硬切
                if current.strip():
                    pieces.append(current.strip())
                pieces.extend(textwrap.wrap(part.strip(), max_chars))
                current = ""
                continue
            if current and len(current + part) > max_chars:
                pieces.append(current.strip())
                current = part
            else:
                current += part
        if current.strip(",;: "):
            pieces.append(current.strip())
    return pieces


def chunk_text(text: str, threshold: int = SENTENCE_THRESHOLD, max_chars: int = MAX_CHUNK_CHARS) -> List[SpeechChunk]:
    return [SpeechChunk(index=i, text=t) for i, t in enumerate(split_text(text, threshold, max_chars))]
