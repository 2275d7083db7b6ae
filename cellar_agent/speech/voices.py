"""本地兜底音色的选择。

评分是纯函数：输入候选列表，输出得分最高的一个，不依赖运行环境，
便于单测。候选列表通常由 `espeak-ng --voices` 的输出解析而来。
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple


MALE_MARKERS = ("male", "homme", "masculin", "thomas", "daniel", "paul", "nicolas", "claude")
FEMALE_MARKERS = ("female", "femme", "marie", "alice", "julie", "sophie")


@dataclass(frozen=True)
class VoiceCandidate:
    name: str
    lang: str
    tags: Tuple[str, ...] = ()

    @property
    def searchable(self) -> str:
        return " ".join((self.name,) + self.tags).lower()


def score_voice(voice: VoiceCandidate, language: str = "fr", locale: str = "fr-FR") -> int:
    score = 0
    lang = voice.lang.lower()
    if lang.startswith(language.lower()):
        score += 50
    if lang == locale.lower():
        score += 25
    text = voice.searchable
    if any(m in text for m in MALE_MARKERS):
        score += 15
    if any(f in text for f in FEMALE_MARKERS):
        score -= 10
    return score


def select_voice(
    candidates: Iterable[VoiceCandidate],
    language: str = "fr",
    locale: str = "fr-FR",
) -> Optional[VoiceCandidate]:
    """返回得分最高的候选；同分取先出现者，列表为空返回 None。"""
    best: Optional[VoiceCandidate] = None
    best_score = -100
    for voice in candidates:
        score = score_voice(voice, language, locale)
        if best is None or score > best_score:
            best, best_score = voice, score
    return best


def parse_espeak_voices(output: str) -> List[VoiceCandidate]:
    """解析 `espeak-ng --voices` 的表格输出。

    Pty Language       Age/Gender VoiceName          File          Other Languages
     5  fr-fr           --/M      French_(France)    roa/fr
    """
    voices: List[VoiceCandidate] = []
    for line in output.splitlines():
        fields = line.split()
        if len(fields) < 4 or fields[0] == "Pty":
            continue
        lang, age_gender, name = fields[1], fields[2], fields[3]
        gender = age_gender.rsplit("/", 1)[-1].upper()
        tags: Tuple[str, ...] = ()
        if gender == "M":
            tags = ("male",)
        elif gender == "F":
            tags = ("female",)
        voices.append(VoiceCandidate(name=name.replace("_", " "), lang=lang, tags=tags))
    return voices
