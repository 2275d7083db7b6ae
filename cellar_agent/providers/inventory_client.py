"""远程库存检索客户端。

POST {inventory_search_url}，请求体为 InventoryQuery 的 JSON，
响应为 {wines, total, returned}。失败时抛出业务异常，
由 query_inventory 工具决定是否改用本地快照。
"""

from typing import Any, Dict

import httpx

from cellar_agent.domain.exceptions import ApiError, NetworkError, RateLimitError
from cellar_agent.domain.wine import InventoryQuery


class RemoteInventoryClient:
    name = "remote-inventory"

    def __init__(self, settings, url: str | None = None):
        self._settings = settings
        self._url = url or settings.inventory_search_url

    def search(self, query: InventoryQuery) -> Dict[str, Any]:
        payload = query.model_dump(exclude_none=True)
        payload["limit"] = query.clamped_limit(self._settings.query_default_limit, self._settings.query_max_limit)
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False) as client:
                resp = client.post(self._url, json=payload, headers={"Content-Type": "application/json"})
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e))
        if resp.status_code == 429:
            raise RateLimitError(code="RATE_LIMIT", message="Inventory search rate limit", http_status=429)
        if resp.status_code >= 400:
            raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
        data = resp.json()
        wines = data.get("wines") or []
        return {
            "wines": wines,
            "total": int(data.get("total", len(wines))),
            "returned": int(data.get("returned", len(wines))),
        }
