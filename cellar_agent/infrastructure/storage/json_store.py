import json
import os
from pathlib import Path
from typing import Any, Dict, List
from uuid import uuid4

from cellar_agent.config.settings import settings
from cellar_agent.domain.exceptions import BusinessError
from cellar_agent.domain.wine import InventoryQuery, Wine, filter_wines, sort_wines


class JsonInventoryStore:
    """本地酒窖库存，一行一个 Wine 的 JSONL 文件。

    既作为 commit_wine 的写入端，也可作为 query_inventory 的检索端
    （未配置远程检索接口时）。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._path = self._root / "wines.jsonl"

    @property
    def path(self) -> Path:
        return self._path

    def list_wines(self) -> List[Wine]:
        items: List[Wine] = []
        if not self._path.exists():
            return items
        try:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise BusinessError(code="STORE_READ_ERROR", message=str(e))
        for line in lines:
            if not line.strip():
                continue
            try:
                items.append(Wine.from_dict(json.loads(line)))
            except (json.JSONDecodeError, TypeError):
                continue
        return items

    def add_wine(self, wine: Wine) -> str:
        """追加一款酒，返回分配的 ID。"""
        wine.id = wine.id or f"w-{uuid4().hex}"
        line = json.dumps(wine.to_dict(), ensure_ascii=False)
        try:
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))
        return wine.id

    def replace_all(self, wines: List[Wine]) -> None:
        tmp_path = self._root / f"wines.{uuid4().hex}.jsonl.tmp"
        try:
            tmp_path.write_text(
                "".join(json.dumps(w.to_dict(), ensure_ascii=False) + "\n" for w in wines),
                encoding="utf-8",
            )
            os.replace(tmp_path, self._path)
        except OSError as e:
            raise BusinessError(code="STORE_WRITE_ERROR", message=str(e))

    def search(self, query: InventoryQuery) -> Dict[str, Any]:
        """按条件检索，返回 {wines, total, returned}。"""
        matched = sort_wines(filter_wines(self.list_wines(), query), query.sort_by, query.sort_order)
        limit = query.clamped_limit(settings.query_default_limit, settings.query_max_limit)
        page = matched[:limit]
        return {
            "wines": [w.to_dict() for w in page],
            "total": len(matched),
            "returned": len(page),
        }
