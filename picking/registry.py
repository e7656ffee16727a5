"""
Registry of picking state machines, one per (worker, order).

Each machine is independent; the registry only indexes them and refuses a
second active session for the same worker and order. The (worker, order)
key is reserved before the order is loaded, so two opens racing on the
gateway cannot both succeed. Completed machines stay readable until
`max_completed` newer ones have finished.
"""
from __future__ import annotations

import structlog
from collections import OrderedDict
from typing import Optional

from config.settings import Settings
from core.errors import SessionStateError
from core.events import PickingEvent
from gateway.base import WarehouseGateway
from models.schemas import Order, SessionCompleted
from picking.state_machine import PickingSessionMachine

logger = structlog.get_logger()

DEFAULT_MAX_COMPLETED = 100


class SessionRegistry:

    def __init__(
        self,
        gateway: WarehouseGateway,
        settings: Optional[Settings] = None,
        max_completed: int = DEFAULT_MAX_COMPLETED,
    ):
        self.gateway = gateway
        self.settings = settings or Settings()
        self.max_completed = max_completed
        self._machines: dict[str, PickingSessionMachine] = {}              # session_id → machine
        self._active: dict[tuple[str, str], Optional[str]] = {}            # (worker, order) → session_id, None while opening
        self._completed: OrderedDict[str, None] = OrderedDict()            # session_ids, oldest first

    def create_machine(self, worker_id: str, language: Optional[str] = None) -> PickingSessionMachine:
        voice = self.settings.voice
        picking = self.settings.picking
        return PickingSessionMachine(
            self.gateway,
            worker_id=worker_id,
            language=language or voice.language,
            min_confidence=voice.min_confidence,
            zero_quantity_policy=picking.zero_quantity_policy,
            enforce_stock_check=picking.enforce_stock_check,
        )

    async def open(self, worker_id: str, order: Order, language: Optional[str] = None) -> PickingSessionMachine:
        key = (worker_id, order.id)
        if key in self._active:
            raise SessionStateError("open a second session for this order",
                                    "opening" if self._active[key] is None else "active")

        self._active[key] = None
        try:
            machine = self.create_machine(worker_id, language)
            session = await machine.load_order(order)
        except BaseException:
            del self._active[key]
            raise

        self._machines[session.id] = machine
        self._active[key] = session.id
        machine.subscribe(lambda event: self._on_event(key, event))
        logger.info("session_registered", session_id=session.id,
                    worker_id=worker_id, order_id=order.id)
        return machine

    def get(self, session_id: str) -> Optional[PickingSessionMachine]:
        return self._machines.get(session_id)

    def active_sessions(self) -> list[PickingSessionMachine]:
        return [self._machines[sid] for sid in self._active.values() if sid is not None]

    def __len__(self):
        return len(self._machines)

    def _on_event(self, key: tuple[str, str], event: PickingEvent):
        if not isinstance(event, SessionCompleted):
            return
        if self._active.get(key) == event.session_id:
            del self._active[key]
        self._completed[event.session_id] = None
        while len(self._completed) > self.max_completed:
            expired, _ = self._completed.popitem(last=False)
            self._machines.pop(expired, None)
            logger.debug("session_evicted", session_id=expired)
        logger.info("session_released", session_id=event.session_id,
                    worker_id=key[0], order_id=key[1])
