"""把 Markdown 风格的回答转换成适合语音合成的纯文本。

只作用于送去合成的文本，界面展示的文本不受影响。

规则：
- 所有句号、冒号、换行都转成逗号（合成器在句号处停顿过长）。
- `!` 与 `?` 原样保留，用于语调。
- **粗体** 转成逗号包围的强调。
- 缩写与小数通过占位符保护，不参与句号替换。
"""

import re
from typing import List, Tuple


_ABBREV = re.compile(r"\b(?:Mr|Mrs|Ms|Dr|St|Jr|Sr|vs|etc|e\.g|i\.e|approx|vol|no)\.", re.IGNORECASE)
_DECIMAL = re.compile(r"\d+\.\d+")
_PLACEHOLDER = "\x00"

_CONTRACTIONS: List[Tuple[re.Pattern, str]] = [
    (re.compile(pattern), replacement)
    for pattern, replacement in [
        (r"\bIt is\b", "It's"),
        (r"\bit is\b", "it's"),
        (r"\bI have\b", "I've"),
        (r"\bI am\b", "I'm"),
        (r"\bdo not\b", "don't"),
        (r"\bDo not\b", "Don't"),
        (r"\bcannot\b", "can't"),
        (r"\bCannot\b", "Can't"),
        (r"\bwill not\b", "won't"),
        (r"\bWill not\b", "Won't"),
        (r"\bthat is\b", "that's"),
        (r"\bThat is\b", "That's"),
        (r"\bwhat is\b", "what's"),
        (r"\bWhat is\b", "What's"),
        (r"\byou are\b", "you're"),
        (r"\bYou are\b", "You're"),
        (r"\bthey are\b", "they're"),
        (r"\bThey are\b", "They're"),
        (r"\bwe are\b", "we're"),
        (r"\bWe are\b", "We're"),
        (r"\bthere is\b", "there's"),
        (r"\bThere is\b", "There's"),
        (r"\bhere is\b", "here's"),
        (r"\bHere is\b", "Here's"),
        (r"\byou would\b", "you'd"),
        (r"\bYou would\b", "You'd"),
        (r"\bwould not\b", "wouldn't"),
        (r"\bWould not\b", "Wouldn't"),
        (r"\bshould not\b", "shouldn't"),
        (r"\bShould not\b", "Shouldn't"),
        (r"\bcould not\b", "couldn't"),
        (r"\bCould not\b", "Couldn't"),
    ]
]


def _protect(text: str) -> Tuple[str, List[str]]:
    spots: List[str] = []

    def _swap(match: re.Match) -> str:
        spots.append(match.group(0))
        return _PLACEHOLDER * len(spots)

    text = _ABBREV.sub(_swap, text)
    text = _DECIMAL.sub(_swap, text)
    return text, spots


def _restore(text: str, spots: List[str]) -> str:
    # 最长的占位符先还原，避免短占位符吃掉长占位符的前缀
    for i in range(len(spots) - 1, -1, -1):
        text = text.replace(_PLACEHOLDER * (i + 1), spots[i])
    return text


def format_for_speech(text: str) -> str:
    s = text or ""

    s = re.sub(r"```[\s\S]*?```", "", s)

    # 粗体必须先于斜体处理；后接 ! 或 ? 时不加尾逗号
    s = re.sub(r"\*\*(.+?)\*\*([!?])", r", \1\2", s)
    s = re.sub(r"\*\*(.+?)\*\*", r", \1,", s)

    s = re.sub(r"\*(.+?)\*", r"\1", s)
    s = re.sub(r"_(.+?)_", r"\1", s)
    s = re.sub(r"^#{1,6}\s+", "", s, flags=re.MULTILINE)

    s = re.sub("[\"“”]", "", s)

    s = re.sub(r"\(\s*([^)]+?)\s*\)", r", \1", s)

    s = re.sub(r"\.{2,}", ".", s)
    s = re.sub(r"!{2,}", "!", s)
    s = re.sub(r"\?{2,}", "?", s)
    s = re.sub(r"!\s+", "! ", s)
    s = re.sub(r"\?\s+", "? ", s)

    s = s.replace("--", "—")

    s = re.sub(r":\s*", ", ", s)
    s = re.sub(r"\n\s*\n", ", ", s)
    s = s.replace("\n", ", ")

    s, spots = _protect(s)
    s = re.sub(r"\.\s*", ", ", s)
    s = _restore(s, spots)

    for pattern, replacement in _CONTRACTIONS:
        s = pattern.sub(replacement, s)

    s = re.sub(r",\s*,+", ",", s)
    s = re.sub(r"\s{2,}", " ", s)
    s = re.sub(r"\s+([.,;:?!])", r"\1", s)
    s = re.sub(r"([,;])\s*([.,;])", r"\1", s)
    s = re.sub(r"^[,\s]+", "", s)
    s = re.sub(r"[,\s]+$", "", s)
    s = re.sub(r"([,;!?])([A-Za-z])", r"\1 \2", s)
    return s.strip()
