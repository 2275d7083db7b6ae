"""酒窖工具：query_inventory / stage_wine / commit_wine。

处理函数签名统一为 (args, session) -> str，args 已由 ToolRegistry 校验。
返回的文本原样作为函数结果交还给模型。
"""

import json
from typing import Optional

from cellar_agent.agents.session import Session
from cellar_agent.config.settings import settings
from cellar_agent.domain.exceptions import BusinessError
from cellar_agent.domain.wine import (
    InventoryQuery,
    WineDraft,
    compute_maturity,
    filter_wines,
    sort_wines,
)
from cellar_agent.infrastructure.logging.logger import logger
from cellar_agent.infrastructure.storage.json_store import JsonInventoryStore
from cellar_agent.providers.base import InventorySearch
from .arguments import TOOL_ARGUMENTS, CommitWineArgs, QueryInventoryArgs, StageWineArgs
from .definitions import ToolDef, ToolParam
from .executor import ToolRegistry


FALLBACK_PREFIX = "[fallback]"

WINE_TYPES = ["Red", "White", "Rosé", "Sparkling", "Dessert", "Fortified"]


QUERY_INVENTORY_DEF = ToolDef(
    name="query_inventory",
    description="Search the wine cellar inventory. All filters are optional and combined with AND.",
    params={
        "wine_type": ToolParam("wine_type", "Wine colour/style", False, {"type": "STRING", "enum": WINE_TYPES}),
        "country": ToolParam("country", "Country of origin", False, {"type": "STRING"}),
        "region": ToolParam("region", "Region, e.g. Bordeaux", False, {"type": "STRING"}),
        "producer": ToolParam("producer", "Producer name (partial match)", False, {"type": "STRING"}),
        "grape_varieties": ToolParam(
            "grape_varieties", "Grape varieties, any match", False, {"type": "ARRAY", "items": {"type": "STRING"}}
        ),
        "vintage_min": ToolParam("vintage_min", "Oldest vintage", False, {"type": "INTEGER"}),
        "vintage_max": ToolParam("vintage_max", "Youngest vintage", False, {"type": "INTEGER"}),
        "price_min": ToolParam("price_min", "Minimum bottle price", False, {"type": "NUMBER"}),
        "price_max": ToolParam("price_max", "Maximum bottle price", False, {"type": "NUMBER"}),
        "maturity_status": ToolParam(
            "maturity_status", "Drinking window status", False,
            {"type": "STRING", "enum": ["HOLD", "DRINK_NOW", "PAST_PEAK"]},
        ),
        "query": ToolParam("query", "Free text matched against producer, name, grape, region", False, {"type": "STRING"}),
        "semantic_query": ToolParam(
            "semantic_query", "Natural language description for similarity search", False, {"type": "STRING"}
        ),
        "sort_by": ToolParam("sort_by", "Sort key", False, {"type": "STRING", "enum": ["vintage", "price", "rating"]}),
        "sort_order": ToolParam("sort_order", "Sort direction", False, {"type": "STRING", "enum": ["asc", "desc"]}),
        "limit": ToolParam("limit", "Maximum results (1-20, default 10)", False, {"type": "INTEGER"}),
    },
)

STAGE_WINE_DEF = ToolDef(
    name="stage_wine",
    description="Stages wine details extracted from a label for confirmation. Does not save anything.",
    params={
        "producer": ToolParam("producer", "Producer / domaine", True, {"type": "STRING"}),
        "name": ToolParam("name", "Cuvée or label name", False, {"type": "STRING"}),
        "vintage": ToolParam("vintage", "Vintage year", False, {"type": "INTEGER"}),
        "type": ToolParam("type", "Wine colour/style", False, {"type": "STRING", "enum": WINE_TYPES}),
        "cepage": ToolParam("cepage", "Grape varieties", False, {"type": "STRING"}),
        "region": ToolParam("region", "Region", False, {"type": "STRING"}),
        "country": ToolParam("country", "Country", False, {"type": "STRING"}),
        "drink_from": ToolParam("drink_from", "Start of drinking window (year)", False, {"type": "INTEGER"}),
        "drink_until": ToolParam("drink_until", "End of drinking window (year)", False, {"type": "INTEGER"}),
        "maturity": ToolParam(
            "maturity", "Maturity status", False, {"type": "STRING", "enum": ["Hold", "Drink Now", "Past Peak"]}
        ),
        "tasting_notes": ToolParam("tasting_notes", "Short tasting notes", False, {"type": "STRING"}),
    },
)

COMMIT_WINE_DEF = ToolDef(
    name="commit_wine",
    description="Commits the staged wine to the cellar. Requires the price; quantity defaults to 1.",
    params={
        "price": ToolParam("price", "Price per bottle", True, {"type": "NUMBER"}),
        "quantity": ToolParam("quantity", "Number of bottles", False, {"type": "INTEGER"}),
    },
)


class CellarTools:
    """三个酒窖工具的处理函数，持有存储与检索后端。"""

    def __init__(self, store: JsonInventoryStore, search: Optional[InventorySearch] = None):
        self._store = store
        self._search = search

    def query_inventory(self, args: QueryInventoryArgs, session: Session) -> str:
        query = InventoryQuery.model_validate(args.model_dump(exclude={"tool"}))
        degraded = False
        if self._search is not None:
            try:
                result = self._search.search(query)
                return _format_result(result, query)
            except Exception as exc:
                logger.warning(
                    "Inventory search failed, using local snapshot",
                    extra={"extra": {"session_id": session.id, "error": str(exc)}},
                )
                degraded = True
        matched = sort_wines(filter_wines(session.cellar, query), query.sort_by, query.sort_order)
        page = matched[: query.clamped_limit(settings.query_default_limit, settings.query_max_limit)]
        local = {"wines": [w.to_dict() for w in page], "total": len(matched), "returned": len(page)}
        text = _format_result(local, query)
        return f"{FALLBACK_PREFIX} {text}" if degraded else text

    def stage_wine(self, args: StageWineArgs, session: Session) -> str:
        draft = WineDraft(**args.model_dump(exclude={"tool"}))
        if draft.maturity is None:
            computed = compute_maturity(draft.drink_from, draft.drink_until)
            draft.maturity = None if computed == "Unknown" else computed
        replaced = session.staged is not None
        session.stage(draft)
        logger.info(
            "Wine staged",
            extra={"extra": {"session_id": session.id, "staged_id": draft.staged_id, "replaced": replaced}},
        )
        summary = json.dumps(draft.describe(), ensure_ascii=False)
        return f"Wine staged: {summary}. Now ask the user for price and quantity."

    def commit_wine(self, args: CommitWineArgs, session: Session) -> str:
        draft = session.staged
        if draft is None:
            return "Error: No wine staged. Call stage_wine with the label details first."
        wine = draft.to_wine(price=args.price, quantity=args.quantity)
        try:
            wine_id = self._store.add_wine(wine)
        except BusinessError as exc:
            logger.error(
                "Wine commit failed",
                extra={"extra": {"session_id": session.id, "staged_id": draft.staged_id, "error": exc.message}},
            )
            return f"Error: could not save the wine ({exc.message}). The staged wine is kept, please try again."
        session.clear_staged()
        session.load_cellar(session.cellar + [wine])
        logger.info("Wine committed", extra={"extra": {"session_id": session.id, "wine_id": wine_id}})
        return f"Success! Wine added to cellar with ID {wine_id}."


def _format_result(result: dict, query: InventoryQuery) -> str:
    wines = result.get("wines") or []
    total = result.get("total", len(wines))
    returned = result.get("returned", len(wines))
    head = f"Found {total} wines ({query.filters_text()}), showing {returned}."
    return f"{head} {json.dumps(wines, ensure_ascii=False)}"


def register_cellar_tools(
    registry: ToolRegistry,
    store: JsonInventoryStore,
    search: Optional[InventorySearch] = None,
) -> CellarTools:
    tools = CellarTools(store=store, search=search)
    registry.register("query_inventory", tools.query_inventory, TOOL_ARGUMENTS, QUERY_INVENTORY_DEF)
    registry.register("stage_wine", tools.stage_wine, TOOL_ARGUMENTS, STAGE_WINE_DEF)
    registry.register("commit_wine", tools.commit_wine, TOOL_ARGUMENTS, COMMIT_WINE_DEF)
    return tools
