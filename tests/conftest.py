"""Shared test fixtures for VoicePick."""
import pytest
from typing import Any

from core.events import EventDispatcher
from gateway.memory import InMemoryWarehouseGateway
from models.schemas import Order, OrderStatus
from picking.state_machine import PickingSessionMachine


def picking_seed(stock: int = 150) -> dict[str, Any]:
    """One open order with two lines: 5 bearings, then 2 connectors."""
    return {
        "orders": [
            {"id": "ORD-1", "order_number": "ORD-2025-101", "customer_name": "ABC Manufacturing",
             "status": "pending", "priority": "high", "warehouse_id": "WH-1"},
            {"id": "ORD-EMPTY", "order_number": "ORD-2025-102", "customer_name": "Nobody Ltd",
             "status": "pending", "warehouse_id": "WH-1"},
        ],
        "order_items": [
            {"id": "ITEM-1", "order_id": "ORD-1", "product_id": "P-1", "quantity_ordered": 5},
            {"id": "ITEM-2", "order_id": "ORD-1", "product_id": "P-2", "quantity_ordered": 2},
        ],
        "products": [
            {"id": "P-1", "sku": "SKU-A001", "name": "Industrial Bearing",
             "location_aisle": "A", "location_shelf": "3", "location_bin": "15",
             "current_stock": stock, "warehouse_id": "WH-1"},
            {"id": "P-2", "sku": "SKU-B002", "name": "Steel Connector",
             "location_aisle": "B", "location_shelf": "1", "location_bin": "08",
             "current_stock": stock, "warehouse_id": "WH-1"},
        ],
        "users": [
            {"id": "W-1", "name": "John Smith", "role": "worker", "warehouse_id": "WH-1"},
        ],
    }


FIRST_ITEM_PROMPT = "Please pick 5 units of Industrial Bearing from location A-3-15"
SECOND_ITEM_PROMPT = "Please pick 2 units of Steel Connector from location B-1-08"


@pytest.fixture
def gateway() -> InMemoryWarehouseGateway:
    return InMemoryWarehouseGateway(seed=picking_seed(), current_user_id="W-1")


@pytest.fixture
def order() -> Order:
    return Order(id="ORD-1", order_number="ORD-2025-101", status=OrderStatus.PENDING,
                 warehouse_id="WH-1")


@pytest.fixture
def empty_order() -> Order:
    return Order(id="ORD-EMPTY", warehouse_id="WH-1")


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def machine(gateway, dispatcher) -> PickingSessionMachine:
    return PickingSessionMachine(gateway, worker_id="W-1", dispatcher=dispatcher)


@pytest.fixture
def make_machine(gateway):
    """Build a machine with non-default options against the shared gateway."""
    def _make(**kwargs) -> PickingSessionMachine:
        kwargs.setdefault("worker_id", "W-1")
        return PickingSessionMachine(kwargs.pop("gateway", gateway), **kwargs)
    return _make
