"""有界对话历史。

窗口以 user 轮次计数：超过 W 个 user 轮次时，从倒数第 W 个 user 轮次
（含）开始保留，其后的 model / function 轮次整体保留，
保证不会提交一个失去对应函数调用的函数结果轮次。
"""

from typing import Iterable, List

from .models import Turn


class TurnHistory:
    def __init__(self, window: int):
        if window < 1:
            raise ValueError("history window must be >= 1")
        self._window = window
        self._turns: List[Turn] = []

    @property
    def window(self) -> int:
        return self._window

    def append(self, turn: Turn) -> None:
        self._turns.append(turn)

    def extend(self, turns: Iterable[Turn]) -> None:
        for turn in turns:
            self.append(turn)

    def snapshot(self) -> List[Turn]:
        """返回用于提交给模型的有序拷贝。"""
        return list(self._turns)

    def user_turn_count(self) -> int:
        return sum(1 for t in self._turns if t.role == "user")

    def enforce_window(self) -> int:
        """裁剪到窗口大小，返回被丢弃的轮次数。"""
        user_positions = [i for i, t in enumerate(self._turns) if t.role == "user"]
        if len(user_positions) <= self._window:
            return 0
        start = user_positions[-self._window]
        dropped = start
        self._turns = self._turns[start:]
        return dropped

    def clear(self) -> None:
        self._turns = []

    def __len__(self) -> int:
        return len(self._turns)


def trim_to_limit(turns: List[Turn], limit: int) -> List[Turn]:
    """按完整的 user 交换从最早处丢弃，直到轮次数不超过 limit。

    只在 user 轮次处切分；最后一个 user 交换（当前消息）始终保留。
    """
    if len(turns) <= limit:
        return list(turns)
    user_positions = [i for i, t in enumerate(turns) if t.role == "user"]
    for pos in user_positions:
        if len(turns) - pos <= limit:
            return turns[pos:]
    return turns[user_positions[-1]:] if user_positions else list(turns)
