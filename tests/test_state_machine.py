"""Tests for PickingSessionMachine — the voice picking session engine."""
import asyncio
import pytest

from core.errors import (
    EmptyOrderError, GatewayUnavailableError, ItemNotFoundError, RejectionReason,
    SessionStateError, UnsupportedLanguageError,
)
from gateway.memory import InMemoryWarehouseGateway
from models.schemas import (
    Announcement, CommandAction, ItemStatus, MutationApplied, OrderStatus, ParsedCommand,
    SessionCompleted, SessionStatus,
)
from picking.state_machine import MachineState, PickingSessionMachine, validate_pick_quantity
from tests.conftest import FIRST_ITEM_PROMPT, SECOND_ITEM_PROMPT, picking_seed

STABLE = (MachineState.AWAITING_COMMAND, MachineState.COMPLETED)


def _updates(gateway) -> int:
    return gateway.call_log.count("update_item")


class TestLoadOrder:
    @pytest.mark.asyncio
    async def test_announces_first_item(self, machine, order, dispatcher):
        session = await machine.load_order(order)

        assert machine.state == MachineState.AWAITING_COMMAND
        assert machine.cursor == 0
        assert session.status == SessionStatus.ACTIVE
        assert session.total_items == 2
        announcements = dispatcher.of_type(Announcement)
        assert [a.text for a in announcements] == [FIRST_ITEM_PROMPT]

    @pytest.mark.asyncio
    async def test_marks_order_picking(self, machine, order, gateway):
        await machine.load_order(order)
        stored = await gateway.get_order("ORD-1")
        assert stored.status == OrderStatus.PICKING
        assert stored.assigned_worker_id == "W-1"

    @pytest.mark.asyncio
    async def test_transition_path(self, machine, order):
        await machine.load_order(order)
        path = [(t.from_state, t.to_state) for t in machine.history]
        assert path == [("idle", "announcing"), ("announcing", "awaiting_command")]

    @pytest.mark.asyncio
    async def test_empty_order(self, machine, empty_order, gateway):
        with pytest.raises(EmptyOrderError):
            await machine.load_order(empty_order)
        assert machine.state == MachineState.IDLE
        assert "start_session" not in gateway.call_log

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_machine_idle(self, machine, order, gateway):
        gateway.fail_next("get_order_items")
        with pytest.raises(GatewayUnavailableError):
            await machine.load_order(order)
        assert machine.state == MachineState.IDLE
        assert not machine.is_busy

        await machine.load_order(order)
        assert machine.state == MachineState.AWAITING_COMMAND

    @pytest.mark.asyncio
    async def test_load_twice(self, machine, order):
        await machine.load_order(order)
        with pytest.raises(SessionStateError):
            await machine.load_order(order)

    @pytest.mark.asyncio
    async def test_submit_before_load(self, machine):
        with pytest.raises(SessionStateError, match="idle"):
            await machine.submit_utterance("pick 5", 0.9)
        with pytest.raises(SessionStateError):
            machine.previous()


class TestConfidenceGate:
    @pytest.mark.asyncio
    async def test_low_confidence_never_mutates(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 5", 0.3)

        assert result.rejection == RejectionReason.LOW_CONFIDENCE
        assert result.announcement.text == "Sorry, I didn't understand. Please repeat."
        assert result.command.action == CommandAction.PICK
        assert _updates(gateway) == 0
        assert machine.current_item.status == ItemStatus.PENDING
        assert machine.state == MachineState.AWAITING_COMMAND

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text,action", [
        ("skip", CommandAction.SKIP),
        ("confirm", CommandAction.CONFIRM),
        ("next", CommandAction.CONFIRM),
        ("help", CommandAction.HELP),
        ("pick 2", CommandAction.PICK),
    ])
    async def test_gate_applies_to_every_action(self, machine, order, gateway, text, action):
        await machine.load_order(order)
        await machine.pick(5)
        updates = _updates(gateway)

        result = await machine.submit_utterance(text, 0.3)

        assert result.command.action == action
        assert result.rejection == RejectionReason.LOW_CONFIDENCE
        assert _updates(gateway) == updates
        assert "complete_session" not in gateway.call_log
        assert machine.cursor == 0
        assert machine.current_item.quantity_picked == 5
        assert machine.state == MachineState.AWAITING_COMMAND

    @pytest.mark.asyncio
    async def test_threshold_is_inclusive(self, machine, order):
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 5", 0.6)
        assert result.applied

    @pytest.mark.asyncio
    async def test_configurable_threshold(self, make_machine, order):
        machine = make_machine(min_confidence=0.95)
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 5", 0.9)
        assert result.rejection == RejectionReason.LOW_CONFIDENCE

    @pytest.mark.asyncio
    async def test_button_commands_bypass_gate(self, machine, order):
        await machine.load_order(order)
        result = await machine.submit_command(
            ParsedCommand(action=CommandAction.PICK, quantity=5, confidence=0.1)
        )
        assert result.applied


class TestPick:
    @pytest.mark.asyncio
    async def test_pick_updates_item(self, machine, order, gateway, dispatcher):
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 5", 0.92)

        assert result.applied
        assert result.announcement.text == "Picked 5 units. Please confirm or say next."
        assert machine.cursor == 0
        assert machine.current_item.status == ItemStatus.PICKED
        assert machine.current_item.quantity_picked == 5
        assert machine.current_item.product.name == "Industrial Bearing"
        assert machine.session.picked_items == 1

        stored = await gateway.get_order_items("ORD-1")
        assert stored[0].status == ItemStatus.PICKED
        assert stored[0].quantity_picked == 5

        mutations = dispatcher.of_type(MutationApplied)
        assert [(m.item_id, m.quantity_picked) for m in mutations] == [("ITEM-1", 5)]

    @pytest.mark.asyncio
    async def test_pick_without_number_picks_one(self, machine, order):
        await machine.load_order(order)
        await machine.submit_utterance("picked", 0.9)
        assert machine.current_item.quantity_picked == 1
        assert machine.current_item.is_short

    @pytest.mark.asyncio
    async def test_overflow_rejected(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 7", 0.95)

        assert result.rejection == RejectionReason.QUANTITY_OVERFLOW
        assert result.announcement.text == "Warning: You picked 7 but only 5 required"
        assert _updates(gateway) == 0
        assert machine.current_item.status == ItemStatus.PENDING

    @pytest.mark.asyncio
    async def test_repick_replaces_quantity(self, machine, order):
        await machine.load_order(order)
        await machine.pick(3)
        await machine.pick(5)
        assert machine.current_item.quantity_picked == 5
        assert machine.cursor == 0

    @pytest.mark.asyncio
    async def test_zero_rejected_by_default(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 0", 0.9)
        assert result.rejection == RejectionReason.ZERO_QUANTITY
        assert _updates(gateway) == 0
        assert machine.cursor == 0

    @pytest.mark.asyncio
    async def test_zero_as_skip(self, make_machine, order):
        machine = make_machine(zero_quantity_policy="skip")
        await machine.load_order(order)
        result = await machine.submit_utterance("pick 0", 0.9)
        assert result.applied
        assert machine.cursor == 1
        assert result.announcement.text.startswith("Item skipped.")

    def test_invalid_zero_policy(self, gateway):
        with pytest.raises(ValueError):
            PickingSessionMachine(gateway, worker_id="W-1", zero_quantity_policy="ignore")

    @pytest.mark.asyncio
    async def test_stock_check(self, order):
        gateway = InMemoryWarehouseGateway(seed=picking_seed(stock=3))
        machine = PickingSessionMachine(gateway, worker_id="W-1", enforce_stock_check=True)
        await machine.load_order(order)

        result = await machine.pick(5)
        assert result.rejection == RejectionReason.INSUFFICIENT_STOCK
        assert "only 3 units" in result.announcement.text

        assert (await machine.pick(3)).applied

    @pytest.mark.asyncio
    async def test_stock_not_checked_by_default(self, order):
        gateway = InMemoryWarehouseGateway(seed=picking_seed(stock=3))
        machine = PickingSessionMachine(gateway, worker_id="W-1")
        await machine.load_order(order)
        assert (await machine.pick(5)).applied

    def test_validate_pick_quantity(self, gateway):
        item = gateway._join(gateway._items["ITEM-1"])
        assert validate_pick_quantity(item, 5)
        assert not validate_pick_quantity(item, 6)


class TestConfirmAndSkip:
    @pytest.mark.asyncio
    async def test_confirm_without_pick_is_noop(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("confirm", 0.9)

        assert result.rejection == RejectionReason.NOTHING_TO_CONFIRM
        assert machine.cursor == 0
        assert _updates(gateway) == 0

    @pytest.mark.asyncio
    async def test_confirm_advances(self, machine, order):
        await machine.load_order(order)
        await machine.submit_utterance("pick 5", 0.9)
        result = await machine.submit_utterance("confirm", 0.9)

        assert result.applied
        assert machine.cursor == 1
        assert result.announcement.text == f"Moving to next item. {SECOND_ITEM_PROMPT}"
        assert result.announcement.item_index == 1

    @pytest.mark.asyncio
    async def test_short_pick_can_be_confirmed(self, machine, order):
        await machine.load_order(order)
        await machine.submit_utterance("pick 3", 0.9)
        await machine.submit_utterance("next", 0.9)
        assert machine.cursor == 1
        assert machine.items[0].is_short

    @pytest.mark.asyncio
    async def test_skip_advances(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("skip", 0.9)

        assert result.applied
        assert machine.cursor == 1
        assert result.announcement.text == f"Item skipped. Moving to next item. {SECOND_ITEM_PROMPT}"
        stored = await gateway.get_order_items("ORD-1")
        assert stored[0].status == ItemStatus.PENDING
        assert stored[0].quantity_picked == 0

    @pytest.mark.asyncio
    async def test_skip_clears_earlier_pick(self, machine, order):
        await machine.load_order(order)
        await machine.pick(4)
        await machine.skip()
        assert machine.items[0].quantity_picked == 0
        assert machine.session.picked_items == 0


class TestCompletion:
    @pytest.mark.asyncio
    async def test_full_order(self, machine, order, gateway, dispatcher):
        await machine.load_order(order)
        for text in ("pick 5", "confirm", "pick 2", "confirm"):
            result = await machine.submit_utterance(text, 0.9)
            assert result.applied
            assert result.state in STABLE

        assert machine.is_completed
        assert result.announcement.text == "Order picking completed!"
        assert machine.session.status == SessionStatus.COMPLETED
        assert machine.session.completed_at is not None
        assert machine.session.picked_items == 2

        completed = dispatcher.of_type(SessionCompleted)
        assert len(completed) == 1
        assert completed[0].picked_items == 2
        assert completed[0].total_items == 2

        stored = await gateway.get_order("ORD-1")
        assert stored.status == OrderStatus.PICKED

    @pytest.mark.asyncio
    async def test_skipping_last_item_completes(self, machine, order, dispatcher):
        await machine.load_order(order)
        await machine.pick(5)
        await machine.confirm()
        await machine.skip()

        assert machine.is_completed
        assert dispatcher.of_type(SessionCompleted)[0].picked_items == 1

    @pytest.mark.asyncio
    async def test_commands_after_completion(self, machine, order, gateway, dispatcher):
        await machine.load_order(order)
        for _ in range(2):
            await machine.skip()
        updates = _updates(gateway)

        result = await machine.submit_utterance("pick 1", 0.9)
        assert result.rejection == RejectionReason.SESSION_COMPLETED
        assert result.state == MachineState.COMPLETED
        assert _updates(gateway) == updates
        assert len(dispatcher.of_type(SessionCompleted)) == 1

        with pytest.raises(SessionStateError):
            machine.previous()

    @pytest.mark.asyncio
    async def test_completion_failure_stays_on_last_item(self, machine, order, gateway, dispatcher):
        await machine.load_order(order)
        await machine.pick(5)
        await machine.confirm()
        await machine.pick(2)

        gateway.fail_next("complete_session")
        result = await machine.confirm()
        assert result.rejection == RejectionReason.GATEWAY_UNAVAILABLE
        assert not machine.is_completed
        assert machine.cursor == 1
        assert machine.state == MachineState.AWAITING_COMMAND
        assert dispatcher.of_type(SessionCompleted) == []

        result = await machine.confirm()
        assert machine.is_completed

    @pytest.mark.asyncio
    async def test_failed_completion_undoes_last_skip(self, machine, order, gateway, dispatcher):
        await machine.load_order(order)
        await machine.pick(5)
        await machine.confirm()
        await machine.pick(2)
        mutations = len(dispatcher.of_type(MutationApplied))

        gateway.fail_next("complete_session")
        result = await machine.skip()

        assert result.rejection == RejectionReason.GATEWAY_UNAVAILABLE
        assert not result.applied
        assert machine.cursor == 1
        assert machine.state == MachineState.AWAITING_COMMAND
        assert machine.current_item.status == ItemStatus.PICKED
        assert machine.current_item.quantity_picked == 2
        assert len(dispatcher.of_type(MutationApplied)) == mutations

        stored = (await gateway.get_order_items("ORD-1"))[1]
        assert stored.status == ItemStatus.PICKED
        assert stored.quantity_picked == 2

        await machine.skip()
        assert machine.is_completed
        assert dispatcher.of_type(SessionCompleted)[0].picked_items == 1

    @pytest.mark.asyncio
    async def test_unrestorable_skip_matches_store(self, machine, order, gateway, monkeypatch):
        await machine.load_order(order)
        await machine.skip()
        await machine.pick(2)

        complete_session = gateway.complete_session

        async def complete_then_break_updates(session_id, picked_items):
            gateway.fail_next("update_item")
            return await complete_session(session_id, picked_items)

        monkeypatch.setattr(gateway, "complete_session", complete_then_break_updates)
        gateway.fail_next("complete_session")
        result = await machine.skip()

        assert result.rejection == RejectionReason.GATEWAY_UNAVAILABLE
        stored = (await gateway.get_order_items("ORD-1"))[1]
        assert stored.status == ItemStatus.PENDING
        assert machine.current_item.status == stored.status
        assert machine.current_item.quantity_picked == 0
        assert machine.cursor == 1


class TestNavigation:
    @pytest.mark.asyncio
    async def test_repeat(self, machine, order):
        await machine.load_order(order)
        result = await machine.submit_utterance("repeat", 0.9)
        assert result.announcement.text == FIRST_ITEM_PROMPT
        assert not result.rejected
        assert machine.state == MachineState.AWAITING_COMMAND

    @pytest.mark.asyncio
    async def test_help(self, machine, order):
        await machine.load_order(order)
        result = await machine.submit_utterance("help", 0.9)
        assert result.announcement.text.startswith("Available commands")
        assert machine.cursor == 0

    @pytest.mark.asyncio
    async def test_unknown_command(self, machine, order, gateway):
        await machine.load_order(order)
        result = await machine.submit_utterance("xyz", 0.9)
        assert result.command.action == CommandAction.UNKNOWN
        assert result.announcement.text == 'Unknown command. Say "help" for available commands.'
        assert not result.rejected
        assert _updates(gateway) == 0

    @pytest.mark.asyncio
    async def test_previous_at_first_item(self, machine, order):
        await machine.load_order(order)
        result = machine.previous()
        assert result.announcement.text == "Already at the first item."
        assert machine.cursor == 0

    @pytest.mark.asyncio
    async def test_previous_goes_back(self, machine, order):
        await machine.load_order(order)
        await machine.skip()
        result = machine.previous()
        assert result.applied
        assert machine.cursor == 0
        assert result.announcement.text == FIRST_ITEM_PROMPT
        assert machine.state == MachineState.AWAITING_COMMAND

    @pytest.mark.asyncio
    async def test_announce_current(self, machine, order):
        await machine.load_order(order)
        assert machine.announce_current().text == FIRST_ITEM_PROMPT


class TestGatewayFailures:
    @pytest.mark.asyncio
    async def test_unavailable_leaves_state(self, machine, order, gateway):
        await machine.load_order(order)
        gateway.fail_next("update_item")
        result = await machine.submit_utterance("pick 5", 0.9)

        assert result.rejection == RejectionReason.GATEWAY_UNAVAILABLE
        assert result.announcement.text == "Error updating item. Please try again."
        assert machine.cursor == 0
        assert machine.current_item.status == ItemStatus.PENDING
        assert machine.state == MachineState.AWAITING_COMMAND

        assert (await machine.submit_utterance("pick 5", 0.9)).applied

    @pytest.mark.asyncio
    async def test_skip_failure_does_not_advance(self, machine, order, gateway):
        await machine.load_order(order)
        gateway.fail_next("update_item")
        result = await machine.skip()
        assert result.rejected
        assert machine.cursor == 0

    @pytest.mark.asyncio
    async def test_item_not_found(self, machine, order, gateway):
        await machine.load_order(order)
        gateway.fail_next("update_item", ItemNotFoundError("ITEM-1"))
        result = await machine.pick(5)
        assert result.rejection == RejectionReason.ITEM_NOT_FOUND
        assert "could not be found" in result.announcement.text
        assert machine.cursor == 0


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_second_submission_while_busy(self, order):
        gateway = InMemoryWarehouseGateway(seed=picking_seed(), latency_ms=50)
        machine = PickingSessionMachine(gateway, worker_id="W-1")
        await machine.load_order(order)

        first = asyncio.create_task(machine.submit_utterance("pick 5", 0.9))
        await asyncio.sleep(0)
        assert machine.is_busy

        second = await machine.submit_utterance("skip", 0.9)
        assert second.rejection == RejectionReason.BUSY
        assert second.state == MachineState.APPLYING
        assert machine.previous().rejection == RejectionReason.BUSY

        switched = machine.set_language("ja")
        assert switched.rejection == RejectionReason.BUSY
        assert machine.language == "en"
        assert machine.state == MachineState.APPLYING

        result = await first
        assert result.applied
        assert machine.cursor == 0
        assert machine.current_item.quantity_picked == 5
        assert gateway.call_log.count("update_item") == 1
        assert not machine.is_busy


class TestLanguage:
    @pytest.mark.asyncio
    async def test_switch_reannounces(self, machine, order):
        await machine.load_order(order)
        result = machine.set_language("ja")
        assert result.announcement.text == "場所 A-3-15 から Industrial Bearing を 5 個ピックしてください"
        assert result.announcement.language == "ja"

        picked = await machine.submit_utterance("5 ピック", 0.9)
        assert picked.applied
        assert picked.announcement.text.startswith("5 個ピックしました")

    def test_switch_before_load(self, machine):
        assert machine.set_language("ja") is None
        assert machine.language == "ja"

    def test_unsupported_language(self, machine, gateway):
        with pytest.raises(UnsupportedLanguageError):
            machine.set_language("fr")
        assert machine.language == "en"
        with pytest.raises(UnsupportedLanguageError):
            PickingSessionMachine(gateway, worker_id="W-1", language="fr")


class TestEvents:
    @pytest.mark.asyncio
    async def test_subscriber_failure_does_not_break_session(self, machine, order):
        def broken(event):
            raise RuntimeError("screen unplugged")

        machine.subscribe(broken)
        await machine.load_order(order)
        assert (await machine.pick(5)).applied

    @pytest.mark.asyncio
    async def test_step_result_repr(self, machine, order):
        await machine.load_order(order)
        result = await machine.pick(9)
        assert "quantity_overflow" in repr(result)
        assert not result
