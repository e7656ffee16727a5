"""
Picking Session State Machine — drives one worker through one order.

The machine owns the cursor (index of the item being picked) and the
session status. Item quantities and statuses are owned by the warehouse
gateway; the machine only asks for them to change, one item per command.

States:

    idle ──load_order──▶ announcing ──▶ awaiting_command
                                          │
            ┌─────────────────────────────┤ submit_utterance / submit_command
            ▼                             ▼
        rejected                       applying
            │                             │
            └──▶ awaiting_command ◀───────┤
                                          ▼
                                      advancing ──▶ announcing ──▶ awaiting_command
                                          │
                                          └──▶ completed (terminal)

Every public call returns with the machine in a stable state
(awaiting_command or completed). A gateway failure aborts the command and
leaves cursor and session status untouched.

Usage:
    machine = PickingSessionMachine(gateway, worker_id="1")
    session = await machine.load_order(order)
    result = await machine.submit_utterance("pick 5", 0.92)
    result.announcement.text   # "Picked 5 units. Please confirm or say next."
"""
from __future__ import annotations

import structlog
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from core.errors import (
    EmptyOrderError, GatewayError, ItemNotFoundError, RejectionReason, SessionStateError,
    UnsupportedLanguageError,
)
from core.events import EventDispatcher, EventListener
from gateway.base import WarehouseGateway
from models.schemas import (
    Announcement, CommandAction, ItemStatus, MutationApplied, Order, OrderItem,
    ParsedCommand, PickingSession, SessionCompleted, SessionStatus, TransitionRecord,
)
from voice.messages import MessageCatalog, MessageKind
from voice.parser import CommandParser

logger = structlog.get_logger()

DEFAULT_MIN_CONFIDENCE = 0.6


class MachineState(str, Enum):
    IDLE = "idle"
    ANNOUNCING = "announcing"
    AWAITING_COMMAND = "awaiting_command"
    APPLYING = "applying"
    REJECTED = "rejected"
    ADVANCING = "advancing"
    COMPLETED = "completed"


# ──────────────────────────────────────────────────────────────
#  Step Result
# ──────────────────────────────────────────────────────────────

class StepResult:
    """Outcome of one command, utterance or navigation call."""

    def __init__(
        self,
        announcement: Optional[Announcement],
        state: MachineState,
        applied: bool = False,
        rejection: Optional[RejectionReason] = None,
        command: Optional[ParsedCommand] = None,
    ):
        self.announcement = announcement
        self.state = state
        self.applied = applied
        self.rejection = rejection
        self.command = command

    @property
    def rejected(self) -> bool:
        return self.rejection is not None

    def __bool__(self):
        return self.applied

    def __repr__(self):
        action = self.command.action.value if self.command else "-"
        if self.rejection:
            return f"<Rejected {action}: {self.rejection.value}>"
        return f"<Step {action} → {self.state.value}{' [applied]' if self.applied else ''}>"


# ──────────────────────────────────────────────────────────────
#  Picking Session State Machine
# ──────────────────────────────────────────────────────────────

class PickingSessionMachine:
    """
    One instance per (worker, order). Not shared across sessions.

    At most one command is in flight: a submission that arrives while an
    earlier one is suspended on the gateway is rejected with
    RejectionReason.BUSY and never interleaved.
    """

    def __init__(
        self,
        gateway: WarehouseGateway,
        worker_id: str,
        language: str = "en",
        parser: Optional[CommandParser] = None,
        messages: Optional[MessageCatalog] = None,
        dispatcher: Optional[EventDispatcher] = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        zero_quantity_policy: str = "reject",
        enforce_stock_check: bool = False,
    ):
        if zero_quantity_policy not in ("reject", "skip"):
            raise ValueError(f"Invalid zero_quantity_policy '{zero_quantity_policy}'")

        self.gateway = gateway
        self.worker_id = worker_id
        self.parser = parser or CommandParser()
        self.messages = messages or MessageCatalog()
        self.events = dispatcher or EventDispatcher()
        self.min_confidence = min_confidence
        self.zero_quantity_policy = zero_quantity_policy
        self.enforce_stock_check = enforce_stock_check

        self._check_language(language)
        self._language = language

        self._state = MachineState.IDLE
        self._cursor = 0
        self._items: list[OrderItem] = []
        self._order: Optional[Order] = None
        self._session: Optional[PickingSession] = None
        self._busy = False
        self.history: list[TransitionRecord] = []

    # ── Introspection ─────────────────────────────────────────

    @property
    def state(self) -> MachineState:
        return self._state

    @property
    def cursor(self) -> int:
        return self._cursor

    @property
    def language(self) -> str:
        return self._language

    @property
    def session(self) -> Optional[PickingSession]:
        return self._session

    @property
    def order(self) -> Optional[Order]:
        return self._order

    @property
    def items(self) -> list[OrderItem]:
        return list(self._items)

    @property
    def current_item(self) -> Optional[OrderItem]:
        if not self._items:
            return None
        return self._items[self._cursor]

    @property
    def is_completed(self) -> bool:
        return self._state == MachineState.COMPLETED

    @property
    def is_busy(self) -> bool:
        return self._busy

    def subscribe(self, listener: EventListener):
        self.events.subscribe(listener)

    # ── Loading ───────────────────────────────────────────────

    async def load_order(self, order: Order) -> PickingSession:
        """
        Fetch the order's items, open a session and announce item 0.

        Raises:
            SessionStateError: an order is already loaded.
            EmptyOrderError:   the order has no items.
            GatewayError:      the gateway failed; the machine stays idle.
        """
        if self._state != MachineState.IDLE or self._busy:
            raise SessionStateError("load an order", "loading" if self._busy else self._state.value)

        self._busy = True
        try:
            items = await self.gateway.get_order_items(order.id)
            if not items:
                raise EmptyOrderError(order.id)
            session = await self.gateway.start_session(self.worker_id, order.id)
        except GatewayError as e:
            logger.error("order_load_failed", order_id=order.id, error=str(e))
            raise
        finally:
            self._busy = False

        self._order = order
        self._items = list(items)
        self._session = session
        self._session.total_items = len(items)
        self._session.status = SessionStatus.ACTIVE
        self._cursor = 0

        logger.info("picking_session_started",
                    session_id=session.id,
                    order_id=order.id,
                    worker_id=self.worker_id,
                    items=len(items))

        self._transition(MachineState.ANNOUNCING, "load_order")
        self._announce_item()
        return session

    # ── Commands ──────────────────────────────────────────────

    async def submit_utterance(self, text: str, confidence: float) -> StepResult:
        """
        Parse and apply a recognized utterance.

        Utterances below min_confidence are rejected before the parsed
        action is consulted, so they can never mutate an item.
        """
        self._require_loaded("submit an utterance")
        if self.is_completed:
            return self._refuse(RejectionReason.SESSION_COMPLETED, MessageKind.SESSION_COMPLETED)
        if self._busy:
            return self._refuse(RejectionReason.BUSY, MessageKind.BUSY)

        command = self.parser.parse(text, self._language)

        if confidence < self.min_confidence:
            logger.info("utterance_low_confidence",
                        text=command.original_text,
                        confidence=confidence,
                        threshold=self.min_confidence)
            return self._reject(RejectionReason.LOW_CONFIDENCE, MessageKind.NOT_UNDERSTOOD,
                                command=command)

        return await self._apply(command)

    async def submit_command(self, command: ParsedCommand) -> StepResult:
        """Apply an already-classified command (button press, API call)."""
        self._require_loaded("submit a command")
        if self.is_completed:
            return self._refuse(RejectionReason.SESSION_COMPLETED, MessageKind.SESSION_COMPLETED,
                                command=command)
        if self._busy:
            return self._refuse(RejectionReason.BUSY, MessageKind.BUSY, command=command)
        return await self._apply(command)

    async def confirm(self) -> StepResult:
        return await self.submit_command(self._command(CommandAction.CONFIRM))

    async def skip(self) -> StepResult:
        return await self.submit_command(self._command(CommandAction.SKIP))

    async def pick(self, quantity: int) -> StepResult:
        return await self.submit_command(self._command(CommandAction.PICK, quantity))

    def previous(self) -> StepResult:
        """Step the cursor back one item and re-announce it."""
        self._require_loaded("go to the previous item")
        if self.is_completed:
            raise SessionStateError("go to the previous item", self._state.value)
        if self._busy:
            return self._refuse(RejectionReason.BUSY, MessageKind.BUSY)

        if self._cursor == 0:
            announcement = self._announce(MessageKind.FIRST_ITEM)
            return StepResult(announcement, self._state)

        self._cursor -= 1
        self._transition(MachineState.ANNOUNCING, "previous")
        return StepResult(self._announce_item(), self._state, applied=True)

    def set_language(self, language: str) -> Optional[StepResult]:
        """
        Switch the language used for parsing and announcements.
        Re-announces the current item when a session is in progress.
        Refused with BUSY while a command is in flight.
        """
        self._check_language(language)
        if self._busy:
            return self._refuse(RejectionReason.BUSY, MessageKind.BUSY)
        self._language = language
        logger.info("language_changed", language=language)
        if self._state in (MachineState.IDLE, MachineState.COMPLETED):
            return None
        return StepResult(self._announce_item(), self._state)

    def announce_current(self) -> Announcement:
        self._require_loaded("announce")
        if self.is_completed:
            return self._announce(MessageKind.ORDER_COMPLETED)
        return self._announce_item()

    # ── Dispatch ──────────────────────────────────────────────

    async def _apply(self, command: ParsedCommand) -> StepResult:
        self._busy = True
        self._transition(MachineState.APPLYING, command.action.value)
        try:
            if command.action == CommandAction.PICK:
                return await self._pick(command)
            if command.action == CommandAction.CONFIRM:
                return await self._confirm(command)
            if command.action == CommandAction.SKIP:
                return await self._skip(command)
            if command.action == CommandAction.REPEAT:
                self._transition(MachineState.ANNOUNCING, "repeat")
                return StepResult(self._announce_item(), self._state, command=command)
            if command.action == CommandAction.HELP:
                announcement = self._announce(MessageKind.HELP)
                self._transition(MachineState.AWAITING_COMMAND, "help")
                return StepResult(announcement, self._state, command=command)

            logger.info("unknown_command", text=command.original_text)
            announcement = self._announce(MessageKind.UNKNOWN_COMMAND)
            self._transition(MachineState.AWAITING_COMMAND, "unknown")
            return StepResult(announcement, self._state, command=command)
        finally:
            self._busy = False

    async def _pick(self, command: ParsedCommand) -> StepResult:
        index = self._cursor
        item = self._items[index]
        quantity = command.quantity

        if quantity > item.quantity_ordered:
            logger.info("pick_quantity_overflow",
                        item_id=item.id, quantity=quantity, ordered=item.quantity_ordered)
            return self._reject(RejectionReason.QUANTITY_OVERFLOW, MessageKind.QUANTITY_OVERFLOW,
                                command=command, quantity=quantity, ordered=item.quantity_ordered)

        if quantity == 0:
            if self.zero_quantity_policy == "skip":
                logger.info("pick_zero_as_skip", item_id=item.id)
                return await self._skip(command)
            return self._reject(RejectionReason.ZERO_QUANTITY, MessageKind.ZERO_QUANTITY,
                                command=command)

        if self.enforce_stock_check and not validate_pick_quantity(item, quantity):
            stock = item.product.current_stock if item.product else 0
            logger.info("pick_insufficient_stock", item_id=item.id, quantity=quantity, stock=stock)
            return self._reject(RejectionReason.INSUFFICIENT_STOCK, MessageKind.INSUFFICIENT_STOCK,
                                command=command, stock=stock)

        try:
            updated = await self.gateway.update_item(item.id, ItemStatus.PICKED, quantity)
        except GatewayError as e:
            return self._gateway_failure(e, command)

        self._record_mutation(index, updated)
        if updated.quantity_picked < updated.quantity_ordered:
            logger.info("short_pick", item_id=item.id,
                        picked=updated.quantity_picked, ordered=updated.quantity_ordered)

        announcement = self._announce(MessageKind.PICK_CONFIRMATION, quantity=quantity)
        self._transition(MachineState.AWAITING_COMMAND, "picked")
        return StepResult(announcement, self._state, applied=True, command=command)

    async def _confirm(self, command: ParsedCommand) -> StepResult:
        item = self._items[self._cursor]
        if not item.is_picked:
            return self._reject(RejectionReason.NOTHING_TO_CONFIRM, MessageKind.NOTHING_TO_CONFIRM,
                                command=command)
        return await self._advance(command, MessageKind.MOVING_NEXT)

    async def _skip(self, command: ParsedCommand) -> StepResult:
        index = self._cursor
        item = self._items[index]
        try:
            updated = await self.gateway.update_item(item.id, ItemStatus.PENDING, 0)
        except GatewayError as e:
            return self._gateway_failure(e, command)

        logger.info("item_skipped", item_id=item.id, index=index)
        if index < len(self._items) - 1:
            self._record_mutation(index, updated)
            return await self._advance(command, MessageKind.ITEM_SKIPPED)

        # Skipping the last item only stands if the session closes with it.
        self._transition(MachineState.ADVANCING, command.action.value)
        picked = self._picked_count() - (1 if item.is_picked else 0)
        try:
            stored = await self.gateway.complete_session(self._session.id, picked)
        except GatewayError as e:
            await self._restore_item(index, item, updated)
            return self._gateway_failure(e, command)

        self._record_mutation(index, updated)
        return self._completed(command, stored)

    async def _restore_item(self, index: int, previous: OrderItem, skipped: OrderItem):
        """Put back an item whose skip could not be completed."""
        try:
            await self.gateway.update_item(previous.id, previous.status, previous.quantity_picked)
        except GatewayError as e:
            # The store kept the skip; mirror it so the session matches the store.
            logger.error("skip_rollback_failed", item_id=previous.id, error=str(e))
            self._record_mutation(index, skipped)
            return
        logger.info("skip_rolled_back", item_id=previous.id,
                    status=previous.status.value, quantity_picked=previous.quantity_picked)

    async def _advance(self, command: ParsedCommand, prefix: MessageKind) -> StepResult:
        self._transition(MachineState.ADVANCING, command.action.value)

        if self._cursor < len(self._items) - 1:
            self._cursor += 1
            self._transition(MachineState.ANNOUNCING, "advance")
            announcement = self._announce_item(prefix=prefix)
            return StepResult(announcement, self._state, applied=True, command=command)

        try:
            stored = await self.gateway.complete_session(self._session.id, self._picked_count())
        except GatewayError as e:
            return self._gateway_failure(e, command)
        return self._completed(command, stored)

    def _completed(self, command: ParsedCommand, stored: PickingSession) -> StepResult:
        picked = self._picked_count()
        self._session.status = SessionStatus.COMPLETED
        self._session.completed_at = stored.completed_at or datetime.now(timezone.utc)
        self._session.picked_items = picked
        self._transition(MachineState.COMPLETED, "complete")

        logger.info("picking_session_completed",
                    session_id=self._session.id,
                    order_id=self._order.id,
                    picked_items=picked,
                    total_items=len(self._items))

        announcement = self._announce(MessageKind.ORDER_COMPLETED)
        self.events.publish(SessionCompleted(
            order_id=self._order.id,
            session_id=self._session.id,
            picked_items=picked,
            total_items=len(self._items),
        ))
        return StepResult(announcement, self._state, applied=True, command=command)

    # ── Helpers ───────────────────────────────────────────────

    def _record_mutation(self, index: int, updated: OrderItem):
        if updated.product is None:
            updated = updated.model_copy(update={"product": self._items[index].product})
        self._items[index] = updated
        self._session.picked_items = self._picked_count()
        self.events.publish(MutationApplied(
            item_id=updated.id,
            quantity_picked=updated.quantity_picked,
            status=updated.status,
        ))

    def _picked_count(self) -> int:
        return sum(1 for i in self._items if i.is_picked)

    def _gateway_failure(self, error: GatewayError, command: ParsedCommand) -> StepResult:
        if isinstance(error, ItemNotFoundError):
            logger.error("pick_item_not_found",
                         item_id=error.item_id, action=command.action.value)
            return self._reject(RejectionReason.ITEM_NOT_FOUND, MessageKind.ITEM_NOT_FOUND,
                                command=command)
        logger.warning("gateway_command_aborted",
                       action=command.action.value, error=str(error))
        return self._reject(RejectionReason.GATEWAY_UNAVAILABLE, MessageKind.GATEWAY_ERROR,
                            command=command)

    def _reject(
        self,
        reason: RejectionReason,
        kind: MessageKind,
        command: Optional[ParsedCommand] = None,
        **params,
    ) -> StepResult:
        logger.info("command_rejected", reason=reason.value, cursor=self._cursor,
                    action=command.action.value if command else None)
        self._transition(MachineState.REJECTED, reason.value)
        announcement = self._announce(kind, **params)
        self._transition(MachineState.AWAITING_COMMAND, "reprompt")
        return StepResult(announcement, self._state, rejection=reason, command=command)

    def _refuse(
        self,
        reason: RejectionReason,
        kind: MessageKind,
        command: Optional[ParsedCommand] = None,
    ) -> StepResult:
        """Announce without a transition; the in-flight command or the terminal state owns it."""
        logger.info("command_refused", reason=reason.value, state=self._state.value)
        return StepResult(self._announce(kind), self._state, rejection=reason, command=command)

    def _announce_item(self, prefix: Optional[MessageKind] = None) -> Announcement:
        item = self._items[self._cursor]
        product = item.product
        text = self.messages.render(
            MessageKind.ITEM_ANNOUNCEMENT, self._language,
            quantity=item.quantity_ordered,
            name=product.name if product else item.product_id,
            location=product.location if product else "-",
        )
        if prefix is not None:
            text = f"{self.messages.render(prefix, self._language)} {text}"
        announcement = self._publish_announcement(text, MessageKind.ITEM_ANNOUNCEMENT)
        if self._state == MachineState.ANNOUNCING:
            self._transition(MachineState.AWAITING_COMMAND, "announced")
        return announcement

    def _announce(self, kind: MessageKind, **params) -> Announcement:
        text = self.messages.render(kind, self._language, **params)
        return self._publish_announcement(text, kind)

    def _publish_announcement(self, text: str, kind: MessageKind) -> Announcement:
        announcement = Announcement(
            text=text,
            item_index=self._cursor,
            kind=kind.value,
            language=self._language,
        )
        self.events.publish(announcement)
        return announcement

    def _transition(self, to_state: MachineState, trigger: str):
        from_state = self._state
        self._state = to_state
        self.history.append(TransitionRecord(
            from_state=from_state.value,
            to_state=to_state.value,
            trigger=trigger,
            item_index=self._cursor,
        ))
        logger.debug("picking_state_transition",
                     transition=f"{from_state.value} → {to_state.value}",
                     trigger=trigger,
                     cursor=self._cursor)

    def _require_loaded(self, operation: str):
        if self._state == MachineState.IDLE:
            raise SessionStateError(operation, self._state.value)

    def _check_language(self, language: str):
        self.parser.lexicon.lookup(language)
        if not self.messages.supports(language):
            raise UnsupportedLanguageError(language)

    def _command(self, action: CommandAction, quantity: int = 1) -> ParsedCommand:
        return ParsedCommand(action=action, quantity=quantity, language=self._language)


def validate_pick_quantity(item: OrderItem, quantity: int) -> bool:
    """A pick may not exceed the ordered quantity nor the product's stock."""
    if quantity > item.quantity_ordered:
        return False
    if item.product is not None and quantity > item.product.current_stock:
        return False
    return True
