"""
Abstract Warehouse Data Gateway — Interface for all warehouse backends.

Implementations:
  - InMemoryWarehouseGateway (dict-based, seeded demo data, fault injection)
  - FileWarehouseGateway     (JSON files on disk, single-process)
  - RESTWarehouseGateway     (remote warehouse API over httpx)

Every operation may suspend. Failures surface as GatewayError subclasses
(core.errors); nothing else is allowed to escape a gateway call.
The gateway is the single writer of OrderItem.quantity_picked / status.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from models.schemas import (
    ItemStatus, Order, OrderItem, OrderStatus, PickingSession, User, WarehouseMetrics,
)


class WarehouseGateway(ABC):
    """Interface that all warehouse gateway backends must implement."""

    # ── Orders ────────────────────────────────────────────────

    @abstractmethod
    async def get_order(self, order_id: str) -> Order:
        """Raises GatewayError if the order is unknown or unreachable."""
        ...

    @abstractmethod
    async def get_orders(self, warehouse_id: str, status: Optional[OrderStatus] = None) -> list[Order]:
        ...

    @abstractmethod
    async def update_order_status(self, order_id: str, status: OrderStatus) -> Order:
        ...

    # ── Order items ───────────────────────────────────────────

    @abstractmethod
    async def get_order_items(self, order_id: str) -> list[OrderItem]:
        """Items in pick order, each joined with its Product."""
        ...

    @abstractmethod
    async def update_item(self, item_id: str, status: ItemStatus, quantity_picked: int) -> OrderItem:
        """
        Overwrite status and quantity_picked of one item.
        Raises ItemNotFoundError for an unknown item_id.
        """
        ...

    # ── Sessions ──────────────────────────────────────────────

    @abstractmethod
    async def start_session(self, worker_id: str, order_id: str) -> PickingSession:
        """Open a session and mark the order as being picked by worker_id."""
        ...

    @abstractmethod
    async def complete_session(self, session_id: str, picked_items: int) -> PickingSession:
        """Close a session and mark its order picked, as one update."""
        ...

    # ── Reporting ─────────────────────────────────────────────

    @abstractmethod
    async def get_warehouse_metrics(self, warehouse_id: str) -> WarehouseMetrics:
        ...

    @abstractmethod
    async def get_current_user(self) -> User:
        ...

    async def close(self) -> None:
        """Release transport resources. No-op for local backends."""
        return None
