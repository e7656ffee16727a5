"""
Core data models for the voice picking system.
These are the universal types shared across all modules.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ──────────────────────────────────────────────────────────────
#  Enums
# ──────────────────────────────────────────────────────────────

class OrderStatus(str, Enum):
    PENDING = "pending"
    PICKING = "picking"
    PICKED = "picked"
    PACKED = "packed"
    SHIPPED = "shipped"


class OrderPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ItemStatus(str, Enum):
    PENDING = "pending"
    PICKING = "picking"
    PICKED = "picked"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"


class CommandAction(str, Enum):
    PICK = "pick"
    CONFIRM = "confirm"
    SKIP = "skip"
    REPEAT = "repeat"
    HELP = "help"
    UNKNOWN = "unknown"


class UserRole(str, Enum):
    WORKER = "worker"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


# ──────────────────────────────────────────────────────────────
#  Warehouse records
# ──────────────────────────────────────────────────────────────

class Product(BaseModel):
    """A stocked product and its three-part bin location."""
    id: str
    sku: str
    name: str
    description: str = ""
    location_aisle: str
    location_shelf: str
    location_bin: str
    current_stock: int = Field(default=0, ge=0)
    reserved_stock: int = Field(default=0, ge=0)
    warehouse_id: str = ""
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def location(self) -> str:
        return f"{self.location_aisle}-{self.location_shelf}-{self.location_bin}"


class OrderItem(BaseModel):
    """One line of an order, optionally joined with its product."""
    id: str
    order_id: str
    product_id: str
    quantity_ordered: int = Field(gt=0)
    quantity_picked: int = Field(default=0, ge=0)
    status: ItemStatus = ItemStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    product: Optional[Product] = None

    @property
    def is_picked(self) -> bool:
        return self.status == ItemStatus.PICKED

    @property
    def is_short(self) -> bool:
        """Picked, but fewer units than ordered."""
        return self.is_picked and self.quantity_picked < self.quantity_ordered


class Order(BaseModel):
    id: str
    order_number: str = ""
    customer_name: str = ""
    status: OrderStatus = OrderStatus.PENDING
    priority: OrderPriority = OrderPriority.MEDIUM
    assigned_worker_id: Optional[str] = None
    warehouse_id: str = ""
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class PickingSession(BaseModel):
    """The bounded lifetime of one worker working one order."""
    id: str = Field(default_factory=lambda: f"session_{uuid.uuid4().hex[:12]}")
    worker_id: str
    order_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    total_items: int = 0
    picked_items: int = 0

    @property
    def is_completed(self) -> bool:
        return self.status == SessionStatus.COMPLETED


class User(BaseModel):
    id: str
    name: str
    role: UserRole = UserRole.WORKER
    warehouse_id: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class WorkerProductivity(BaseModel):
    worker_id: str
    worker_name: str
    orders_completed: int = 0
    items_picked: int = 0


class WarehouseMetrics(BaseModel):
    total_orders: int = 0
    active_picking_sessions: int = 0
    completed_today: int = 0
    pending_orders: int = 0
    worker_productivity: list[WorkerProductivity] = []


# ──────────────────────────────────────────────────────────────
#  Voice commands
# ──────────────────────────────────────────────────────────────

class ParsedCommand(BaseModel):
    """A classified utterance. Ephemeral; never persisted."""
    action: CommandAction
    quantity: int = Field(default=1, ge=0)
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    original_text: str = ""
    language: str = "en"

    model_config = {"frozen": True}


# ──────────────────────────────────────────────────────────────
#  Emitted events, consumed by the presentation layer
# ──────────────────────────────────────────────────────────────

class Announcement(BaseModel):
    text: str
    item_index: int = 0
    kind: str = ""
    language: str = "en"
    timestamp: datetime = Field(default_factory=_utcnow)


class SessionCompleted(BaseModel):
    order_id: str
    session_id: str = ""
    picked_items: int = 0
    total_items: int = 0
    timestamp: datetime = Field(default_factory=_utcnow)


class MutationApplied(BaseModel):
    item_id: str
    quantity_picked: int
    status: ItemStatus
    timestamp: datetime = Field(default_factory=_utcnow)


class TransitionRecord(BaseModel):
    """A single state change inside a picking session."""
    from_state: str
    to_state: str
    trigger: str
    item_index: int = 0
    metadata: dict[str, Any] = {}
    timestamp: datetime = Field(default_factory=_utcnow)
