"""酒窖领域模型。

- Wine: 已入库的一瓶（一款）酒。
- WineDraft: stage_wine 工具产生的草稿，只存在于会话中，commit 之前不落盘。
- InventoryQuery: 库存检索条件，以及对应的内存过滤 / 排序实现。
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Literal, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


MaturityStatus = Literal["HOLD", "DRINK_NOW", "PAST_PEAK"]

MATURITY_LABELS: Dict[str, str] = {
    "HOLD": "Hold",
    "DRINK_NOW": "Drink Now",
    "PAST_PEAK": "Past Peak",
}

UNKNOWN_LABEL = "Unknown Label"


@dataclass
class Wine:
    id: str
    producer: str
    name: str
    vintage: Optional[int] = None
    type: Optional[str] = None
    cepage: Optional[str] = None
    appellation: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    quantity: int = 1
    drink_from: Optional[int] = None
    drink_until: Optional[int] = None
    maturity: Optional[str] = None
    tasting_notes: Optional[str] = None
    price: Optional[float] = None
    vivino_rating: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Wine":
        known = {f for f in cls.__dataclass_fields__}
        values = {k: v for k, v in data.items() if k in known}
        values.setdefault("id", f"w-{uuid4().hex}")
        values.setdefault("producer", "")
        values.setdefault("name", "")
        return cls(**values)


@dataclass
class WineDraft:
    """会话内暂存的酒款草稿。"""

    producer: Optional[str] = None
    name: Optional[str] = None
    vintage: Optional[int] = None
    type: Optional[str] = None
    cepage: Optional[str] = None
    region: Optional[str] = None
    country: Optional[str] = None
    drink_from: Optional[int] = None
    drink_until: Optional[int] = None
    maturity: Optional[str] = None
    tasting_notes: Optional[str] = None
    staged_id: str = field(default_factory=lambda: f"s-{uuid4().hex[:12]}")

    def to_wine(self, price: float, quantity: Optional[int] = None) -> Wine:
        """补齐价格和数量，生成待写入的 Wine（id 由存储层分配）。"""
        return Wine(
            id="",
            producer=self.producer or "",
            name=self.name or UNKNOWN_LABEL,
            vintage=self.vintage,
            type=self.type,
            cepage=self.cepage,
            region=self.region,
            country=self.country,
            quantity=quantity or 1,
            drink_from=self.drink_from,
            drink_until=self.drink_until,
            maturity=self.maturity,
            tasting_notes=self.tasting_notes,
            price=price,
        )

    def describe(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None and k != "staged_id"}


def compute_maturity(drink_from: Optional[int], drink_until: Optional[int], year: Optional[int] = None) -> str:
    """根据适饮窗口计算成熟度标签。"""
    if not drink_from or not drink_until:
        return "Unknown"
    current = year or datetime.now().year
    if drink_from <= current <= drink_until:
        return "Drink Now"
    if current < drink_from:
        return "Hold"
    return "Past Peak"


class InventoryQuery(BaseModel):
    """库存检索条件。结构化字段精确/包含匹配，query 为自由文本，semantic_query 交给远端向量检索。"""

    wine_type: Optional[str] = None
    country: Optional[str] = None
    region: Optional[str] = None
    producer: Optional[str] = None
    grape_varieties: List[str] = Field(default_factory=list)
    vintage_min: Optional[int] = None
    vintage_max: Optional[int] = None
    price_min: Optional[float] = None
    price_max: Optional[float] = None
    maturity_status: Optional[MaturityStatus] = None
    query: Optional[str] = None
    semantic_query: Optional[str] = None
    sort_by: Optional[Literal["vintage", "price", "rating"]] = None
    sort_order: Literal["asc", "desc"] = "asc"
    limit: Optional[int] = None

    def clamped_limit(self, default: int = 10, maximum: int = 20) -> int:
        return min(max(self.limit or default, 1), maximum)

    def filters_text(self) -> str:
        data = self.model_dump(exclude_none=True, exclude_defaults=True, exclude={"limit"})
        return ", ".join(f"{k}={v}" for k, v in data.items()) or "no filters"


def _contains(value: Optional[str], needle: str) -> bool:
    return needle in (value or "").lower()


def filter_wines(wines: Iterable[Wine], q: InventoryQuery, year: Optional[int] = None) -> List[Wine]:
    """按检索条件在内存中过滤。semantic_query 无法在本地执行，会被忽略。"""

    result = list(wines)
    if q.wine_type:
        result = [w for w in result if w.type == q.wine_type]
    if q.country:
        result = [w for w in result if w.country == q.country]
    if q.region:
        result = [w for w in result if w.region == q.region]
    if q.producer:
        p = q.producer.lower()
        result = [w for w in result if _contains(w.producer, p)]
    if q.grape_varieties:
        grapes = [g.lower() for g in q.grape_varieties]
        result = [w for w in result if any(_contains(w.cepage, g) for g in grapes)]
    if q.vintage_min:
        result = [w for w in result if (w.vintage or 0) >= q.vintage_min]
    if q.vintage_max:
        result = [w for w in result if (w.vintage or 0) <= q.vintage_max]
    if q.price_min:
        result = [w for w in result if (w.price or 0) >= q.price_min]
    if q.price_max:
        result = [w for w in result if (w.price or 0) <= q.price_max]
    if q.maturity_status:
        target = MATURITY_LABELS[q.maturity_status]
        result = [w for w in result if compute_maturity(w.drink_from, w.drink_until, year) == target]
    if q.query:
        text = q.query.lower()
        result = [
            w for w in result
            if any(_contains(v, text) for v in (w.producer, w.name, w.cepage, w.region, w.appellation))
        ]
    return result


def sort_wines(wines: List[Wine], sort_by: Optional[str], sort_order: str = "asc") -> List[Wine]:
    if not sort_by:
        return wines
    keys = {
        "vintage": lambda w: w.vintage or 0,
        "price": lambda w: w.price or 0,
        "rating": lambda w: w.vivino_rating or 0,
    }
    key = keys.get(sort_by)
    if key is None:
        return wines
    return sorted(wines, key=key, reverse=(sort_order == "desc"))
