"""
InMemoryWarehouseGateway — Dict-backed gateway for development and testing.

Features:
  - Zero dependencies (no warehouse service, no database)
  - Optional demo seed data (two orders, two products, two workers)
  - Deterministic simulated latency (latency_ms per call)
  - Fault injection: fail_next() / fail_always() per operation
  - All data lost on process restart

Each instance owns its own data; construct one per application or per test.
"""
from __future__ import annotations

import asyncio
import copy
import structlog
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Optional

from core.errors import GatewayError, GatewayUnavailableError, ItemNotFoundError, NotFoundError
from gateway.base import WarehouseGateway
from models.schemas import (
    ItemStatus, Order, OrderItem, OrderStatus, PickingSession, Product,
    SessionStatus, User, WarehouseMetrics, WorkerProductivity,
)

logger = structlog.get_logger()

OPERATIONS = (
    "get_order", "get_orders", "update_order_status", "get_order_items",
    "update_item", "start_session", "complete_session",
    "get_warehouse_metrics", "get_current_user",
)

_DONE_ORDER_STATES = {OrderStatus.PICKED.value, OrderStatus.PACKED.value, OrderStatus.SHIPPED.value}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def demo_seed() -> dict[str, Any]:
    """Sample warehouse: two orders, the first with two lines."""
    return {
        "orders": [
            {"id": "1", "order_number": "ORD-2025-001", "customer_name": "ABC Manufacturing",
             "status": "picking", "priority": "high", "assigned_worker_id": "1",
             "warehouse_id": "1"},
            {"id": "2", "order_number": "ORD-2025-002", "customer_name": "XYZ Corporation",
             "status": "pending", "priority": "medium", "warehouse_id": "1"},
        ],
        "order_items": [
            {"id": "1", "order_id": "1", "product_id": "1",
             "quantity_ordered": 5, "quantity_picked": 3, "status": "picking"},
            {"id": "2", "order_id": "1", "product_id": "2",
             "quantity_ordered": 2, "quantity_picked": 0, "status": "pending"},
        ],
        "products": [
            {"id": "1", "sku": "SKU-A001", "name": "Industrial Bearing",
             "description": "High-grade industrial bearing component",
             "location_aisle": "A", "location_shelf": "3", "location_bin": "15",
             "current_stock": 150, "reserved_stock": 25, "warehouse_id": "1"},
            {"id": "2", "sku": "SKU-B002", "name": "Steel Connector",
             "description": "Stainless steel connector piece",
             "location_aisle": "B", "location_shelf": "1", "location_bin": "08",
             "current_stock": 89, "reserved_stock": 12, "warehouse_id": "1"},
        ],
        "users": [
            {"id": "1", "name": "John Smith", "role": "worker", "warehouse_id": "1"},
            {"id": "2", "name": "Maria Garcia", "role": "worker", "warehouse_id": "1"},
        ],
    }


class InMemoryWarehouseGateway(WarehouseGateway):
    """
    Full-featured in-memory gateway.
    Records are held as JSON-compatible dicts and returned as fresh models,
    so callers never share mutable state with the store.
    """

    def __init__(
        self,
        seed: Optional[dict[str, Any]] = None,
        latency_ms: int = 0,
        current_user_id: str = "1",
    ):
        self.latency_ms = latency_ms
        self.current_user_id = current_user_id
        self.call_log: list[str] = []

        self._orders: dict[str, dict] = {}          # id → order dict
        self._items: dict[str, dict] = {}           # id → order item dict (insertion = pick order)
        self._products: dict[str, dict] = {}        # id → product dict
        self._sessions: dict[str, dict] = {}        # id → session dict
        self._users: dict[str, dict] = {}           # id → user dict

        self._fail_next: dict[str, list[GatewayError]] = {}
        self._fail_always: dict[str, GatewayError] = {}

        if seed:
            self.load_seed(seed)
        logger.info("inmemory_gateway_initialized",
                    orders=len(self._orders), items=len(self._items))

    # ── Seeding ───────────────────────────────────────────

    def load_seed(self, seed: dict[str, Any]):
        now = _utcnow().isoformat()
        for raw in seed.get("products", []):
            self._products[raw["id"]] = Product(**{"created_at": now, **raw}).model_dump(mode="json")
        for raw in seed.get("orders", []):
            self._orders[raw["id"]] = Order(**{"created_at": now, "updated_at": now, **raw}).model_dump(mode="json")
        for raw in seed.get("order_items", []):
            self._items[raw["id"]] = OrderItem(
                **{"created_at": now, "updated_at": now, **raw}
            ).model_dump(mode="json", exclude={"product"})
        for raw in seed.get("users", []):
            self._users[raw["id"]] = User(**{"created_at": now, **raw}).model_dump(mode="json")
        for raw in seed.get("sessions", []):
            self._sessions[raw["id"]] = PickingSession(**raw).model_dump(mode="json")

    # ── Fault injection ───────────────────────────────────

    def fail_next(self, operation: str, error: Optional[GatewayError] = None):
        """Make the next call to `operation` raise `error`."""
        self._check_operation(operation)
        self._fail_next.setdefault(operation, []).append(error or GatewayUnavailableError())

    def fail_always(self, operation: str, error: Optional[GatewayError] = None):
        self._check_operation(operation)
        self._fail_always[operation] = error or GatewayUnavailableError()

    def clear_faults(self):
        self._fail_next.clear()
        self._fail_always.clear()

    @staticmethod
    def _check_operation(operation: str):
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown gateway operation '{operation}'")

    async def _enter(self, operation: str):
        """Simulated latency, call logging and injected faults for one call."""
        self.call_log.append(operation)
        if self.latency_ms > 0:
            await asyncio.sleep(self.latency_ms / 1000)
        pending = self._fail_next.get(operation)
        if pending:
            error = pending.pop(0)
            logger.debug("gateway_fault_injected", operation=operation, error=str(error))
            raise error
        if operation in self._fail_always:
            raise self._fail_always[operation]

    def _changed(self, collection: str):
        """Hook called after every mutation. Overridden by persistent stores."""

    def _collection(self, collection: str) -> dict[str, dict]:
        mapping = {
            "orders": self._orders,
            "order_items": self._items,
            "products": self._products,
            "sessions": self._sessions,
            "users": self._users,
        }
        return mapping[collection]

    @contextmanager
    def _mutation(self, *collections: str):
        """
        Apply a change to `collections` and persist it through _changed().
        If persisting fails the in-memory records are put back, so a failed
        call leaves no trace.
        """
        snapshot = {c: copy.deepcopy(self._collection(c)) for c in collections}
        persisted: list[str] = []
        try:
            yield
            for c in collections:
                self._changed(c)
                persisted.append(c)
        except GatewayError:
            for c, saved in snapshot.items():
                target = self._collection(c)
                target.clear()
                target.update(saved)
            logger.warning("gateway_mutation_rolled_back", collections=list(collections))
            # collections already written must match the restored records again
            for c in persisted:
                try:
                    self._changed(c)
                except GatewayError as e:
                    logger.error("gateway_rollback_persist_failed", collection=c, error=str(e))
            raise

    # ── Orders ────────────────────────────────────────────

    async def get_order(self, order_id: str) -> Order:
        await self._enter("get_order")
        data = self._orders.get(order_id)
        if data is None:
            raise NotFoundError("order", order_id)
        return Order(**data)

    async def get_orders(self, warehouse_id: str, status: Optional[OrderStatus] = None) -> list[Order]:
        await self._enter("get_orders")
        orders = [o for o in self._orders.values() if o["warehouse_id"] == warehouse_id]
        if status is not None:
            orders = [o for o in orders if o["status"] == OrderStatus(status).value]
        return [Order(**o) for o in orders]

    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        await self._enter("update_order_status")
        data = self._orders.get(order_id)
        if data is None:
            raise NotFoundError("order", order_id)
        with self._mutation("orders"):
            data["status"] = OrderStatus(status).value
            data["updated_at"] = _utcnow().isoformat()
        return Order(**data)

    # ── Order items ───────────────────────────────────────

    def _join(self, item: dict) -> OrderItem:
        product = self._products.get(item["product_id"])
        return OrderItem(**item, product=Product(**product) if product else None)

    async def get_order_items(self, order_id: str) -> list[OrderItem]:
        await self._enter("get_order_items")
        return [self._join(i) for i in self._items.values() if i["order_id"] == order_id]

    async def update_item(self, item_id: str, status: ItemStatus, quantity_picked: int) -> OrderItem:
        await self._enter("update_item")
        item = self._items.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        with self._mutation("order_items"):
            item["status"] = ItemStatus(status).value
            item["quantity_picked"] = quantity_picked
            item["updated_at"] = _utcnow().isoformat()
        logger.debug("gateway_item_updated", item_id=item_id,
                     status=item["status"], quantity_picked=quantity_picked)
        return self._join(item)

    # ── Sessions ──────────────────────────────────────────

    async def start_session(self, worker_id: str, order_id: str) -> PickingSession:
        await self._enter("start_session")
        order = self._orders.get(order_id)
        if order is None:
            raise NotFoundError("order", order_id)

        items = [i for i in self._items.values() if i["order_id"] == order_id]
        session = PickingSession(
            worker_id=worker_id,
            order_id=order_id,
            total_items=len(items),
            picked_items=sum(1 for i in items if i["status"] == ItemStatus.PICKED.value),
        )
        with self._mutation("sessions", "orders"):
            self._sessions[session.id] = session.model_dump(mode="json")
            order["status"] = OrderStatus.PICKING.value
            order["assigned_worker_id"] = worker_id
            order["updated_at"] = _utcnow().isoformat()
        return session

    async def complete_session(self, session_id: str, picked_items: int) -> PickingSession:
        await self._enter("complete_session")
        data = self._sessions.get(session_id)
        if data is None:
            raise NotFoundError("session", session_id)
        now = _utcnow().isoformat()
        with self._mutation("sessions", "orders"):
            data["status"] = SessionStatus.COMPLETED.value
            data["completed_at"] = now
            data["picked_items"] = picked_items

            order = self._orders.get(data["order_id"])
            if order is not None:
                order["status"] = OrderStatus.PICKED.value
                order["updated_at"] = now
        return PickingSession(**data)

    # ── Reporting ─────────────────────────────────────────

    async def get_warehouse_metrics(self, warehouse_id: str) -> WarehouseMetrics:
        await self._enter("get_warehouse_metrics")
        orders = [o for o in self._orders.values() if o["warehouse_id"] == warehouse_id]
        order_ids = {o["id"] for o in orders}
        sessions = [s for s in self._sessions.values() if s["order_id"] in order_ids]
        today = _utcnow().date()

        completed_today = sum(
            1 for o in orders
            if o["status"] in _DONE_ORDER_STATES
            and Order(**o).updated_at.date() == today
        )

        productivity = []
        for user in self._users.values():
            if user["warehouse_id"] != warehouse_id or user["role"] != "worker":
                continue
            done = [s for s in sessions
                    if s["worker_id"] == user["id"] and s["status"] == SessionStatus.COMPLETED.value]
            productivity.append(WorkerProductivity(
                worker_id=user["id"],
                worker_name=user["name"],
                orders_completed=len(done),
                items_picked=sum(s["picked_items"] for s in done),
            ))

        return WarehouseMetrics(
            total_orders=len(orders),
            active_picking_sessions=sum(
                1 for s in sessions if s["status"] == SessionStatus.ACTIVE.value
            ),
            completed_today=completed_today,
            pending_orders=sum(1 for o in orders if o["status"] == OrderStatus.PENDING.value),
            worker_productivity=productivity,
        )

    async def get_current_user(self) -> User:
        await self._enter("get_current_user")
        data = self._users.get(self.current_user_id)
        if data is None:
            raise NotFoundError("user", self.current_user_id)
        return User(**data)
