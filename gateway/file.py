"""
FileWarehouseGateway — JSON file-backed gateway that survives restarts.

Data layout:
  {data_dir}/
    orders.json
    order_items.json
    products.json
    sessions.json
    users.json

Features:
  - Survives process restarts (unlike InMemoryWarehouseGateway)
  - No external dependencies (no warehouse service)
  - Every mutation rewrites the changed collection (temp file + rename)
  - A failed write rolls the mutation back in memory too
  - Single-process only (no concurrent write safety)

Best for: demos, edge devices, offline warehouses.
"""
from __future__ import annotations

import json
import structlog
from pathlib import Path
from typing import Any, Optional

from core.errors import GatewayUnavailableError
from gateway.memory import InMemoryWarehouseGateway

logger = structlog.get_logger()

_COLLECTIONS = ["orders", "order_items", "products", "sessions", "users"]


class FileWarehouseGateway(InMemoryWarehouseGateway):
    """
    Extends InMemoryWarehouseGateway with JSON file persistence.

    On init: loads all collections from disk. When the directory holds no
    data yet, `seed` is loaded and written out.
    On every write: flushes the changed collection to disk.
    """

    def __init__(
        self,
        data_dir: str = "./data",
        seed: Optional[dict[str, Any]] = None,
        latency_ms: int = 0,
        current_user_id: str = "1",
    ):
        super().__init__(latency_ms=latency_ms, current_user_id=current_user_id)
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)

        if self._load_all() == 0 and seed:
            self.load_seed(seed)
            self.flush_all()
        logger.info("file_gateway_initialized", data_dir=str(self._data_dir))

    # ── Load / Save ───────────────────────────────────────

    def _file_path(self, collection: str) -> Path:
        return self._data_dir / f"{collection}.json"

    def _load_all(self) -> int:
        """Load all collections from disk. Returns the number of files read."""
        loaded = 0
        for collection in _COLLECTIONS:
            path = self._file_path(collection)
            if not path.exists():
                continue
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("file_gateway_load_error",
                               collection=collection, error=str(e))
                continue
            if isinstance(data, dict):
                target = self._collection(collection)
                target.clear()
                target.update(data)
                loaded += 1
                logger.debug("file_gateway_loaded", collection=collection, records=len(data))
        return loaded

    def _flush_collection(self, collection: str):
        """Write a single collection to disk."""
        path = self._file_path(collection)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._collection(collection), f, indent=2, ensure_ascii=False, default=str)
        tmp_path.replace(path)

    def _changed(self, collection: str):
        try:
            self._flush_collection(collection)
        except OSError as e:
            logger.error("file_gateway_flush_failed", collection=collection, error=str(e))
            raise GatewayUnavailableError(f"Could not persist {collection}: {e}") from e

    def flush_all(self):
        """Force flush all collections to disk."""
        for c in _COLLECTIONS:
            self._flush_collection(c)
        logger.info("file_gateway_flushed_all")
