"""系统提示词加载工具。

按语言(locale) 从 prompts/<locale> 目录读取侍酒师的 system prompt 模板，
再填入当前年份、库存概要与暂存草稿，作为 ModelRequest.system_instruction。
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from cellar_agent.domain.wine import WineDraft


PROMPTS_DIR = Path(__file__).resolve().parent


def load_system_prompt(agent_type: str = "sommelier", locale: str = "en") -> str:
    """根据 Agent 类型和语言加载系统提示词模板。"""

    fname = PROMPTS_DIR / locale / f"{agent_type}_system.md"
    return fname.read_text(encoding="utf-8")


def build_system_prompt(
    inventory_context: str,
    staged: Optional[WineDraft] = None,
    year: Optional[int] = None,
    locale: str = "en",
) -> str:
    if staged is not None:
        staged_section = f"STAGED WINE (Awaiting Price/Quantity): {json.dumps(staged.describe(), ensure_ascii=False)}"
    else:
        staged_section = "No wine currently staged."
    return load_system_prompt("sommelier", locale).format(
        current_year=year or datetime.now().year,
        inventory_context=inventory_context or "Inventory context unavailable.",
        staged_section=staged_section,
    )
