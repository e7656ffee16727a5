"""
Error taxonomy for picking sessions.

Exceptions are raised for failures that abort an operation (load-time
failures, gateway failures, calls made in the wrong machine state).
Recoverable command outcomes are reported as a RejectionReason on the
step result instead of being raised.
"""
from __future__ import annotations

from enum import Enum


class PickingError(Exception):
    """Base exception for all picking operations."""

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class UnsupportedLanguageError(PickingError):
    def __init__(self, language: str):
        self.language = language
        super().__init__(f"Unsupported language '{language}'")


class EmptyOrderError(PickingError):
    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order '{order_id}' has no items")


class SessionStateError(PickingError):
    """Operation is not valid in the machine's current state."""

    def __init__(self, operation: str, state: str):
        self.operation = operation
        self.state = state
        super().__init__(f"Cannot {operation} while session is {state}")


class VoiceUnavailableError(PickingError):
    """Speech recognition or synthesis is not available on this host."""


class GatewayError(PickingError):
    """Base for every failure surfaced by a warehouse data gateway."""


class GatewayUnavailableError(GatewayError):
    def __init__(self, message: str = "Warehouse gateway unavailable"):
        super().__init__(message, retryable=True)


class NotFoundError(GatewayError):
    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind.capitalize()} '{record_id}' not found")


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__("order item", item_id)


class RejectionReason(str, Enum):
    LOW_CONFIDENCE = "low_confidence"
    QUANTITY_OVERFLOW = "quantity_overflow"
    ZERO_QUANTITY = "zero_quantity"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOTHING_TO_CONFIRM = "nothing_to_confirm"
    BUSY = "busy"
    GATEWAY_UNAVAILABLE = "gateway_unavailable"
    ITEM_NOT_FOUND = "item_not_found"
    SESSION_COMPLETED = "session_completed"
