"""
Voice Picking Controller — wires a Voice I/O adapter to a picking session.

Flow:
  adapter hears an utterance (any thread)
    → marshalled onto the event loop
    → PickingSessionMachine.submit_utterance
    → Announcement events
    → adapter.speak

Listening stops on its own once the session completes. Stopping early
leaves the machine in its last stable state.

run_voice_session() is the hands-free entry point: it opens a registry
session for one order, speaks through the configured adapter and returns
when the order is picked or listening is stopped.
"""
from __future__ import annotations

import asyncio
import structlog
from typing import Optional

from config.settings import Settings
from core.errors import SessionStateError
from core.events import PickingEvent
from gateway.base import WarehouseGateway
from gateway.factory import create_gateway
from models.schemas import Announcement, Order, PickingSession, SessionCompleted
from picking.registry import SessionRegistry
from picking.state_machine import MachineState, PickingSessionMachine, StepResult
from voice.adapter import VoiceIOAdapter, create_voice_adapter

logger = structlog.get_logger()


class VoicePickingController:

    def __init__(self, machine: PickingSessionMachine, adapter: VoiceIOAdapter):
        self.machine = machine
        self.adapter = adapter
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: set[asyncio.Task] = set()
        self._lock = asyncio.Lock()
        self._stopped = asyncio.Event()
        self.results: list[StepResult] = []
        self.adapter.set_language(machine.language)
        machine.subscribe(self._on_event)

    @property
    def is_listening(self) -> bool:
        return self.adapter.is_listening

    async def start(self, order: Optional[Order] = None) -> PickingSession:
        """
        Load the order (announcing item 0) and begin listening.
        A machine that is already loaded has its current item announced again.
        """
        self._loop = asyncio.get_running_loop()
        if self.machine.state == MachineState.IDLE:
            if order is None:
                raise SessionStateError("start listening", self.machine.state.value)
            session = await self.machine.load_order(order)
        else:
            session = self.machine.session
            self.machine.announce_current()

        if self.machine.is_completed:
            self._stopped.set()
        elif self.adapter.is_supported():
            self._stopped.clear()
            self.adapter.start_listening(self._on_result)
        else:
            logger.warning("voice_input_unavailable",
                           adapter=type(self.adapter).__name__,
                           session_id=session.id)
            self._stopped.set()
        return session

    def stop(self):
        self.adapter.stop_listening()
        self._stopped.set()

    def resume(self):
        if self.machine.is_completed:
            return
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._stopped.clear()
        self.adapter.start_listening(self._on_result)

    async def wait_stopped(self):
        """Block until listening ends: the session completed or stop() was called."""
        await self._stopped.wait()

    def set_language(self, language: str) -> Optional[StepResult]:
        result = self.machine.set_language(language)
        if result is None or not result.rejected:
            self.adapter.set_language(language)
        return result

    async def handle_utterance(self, text: str, confidence: float) -> StepResult:
        # utterances heard while one is being applied wait their turn
        async with self._lock:
            result = await self.machine.submit_utterance(text, confidence)
        self.results.append(result)
        logger.debug("utterance_handled", text=text, confidence=confidence, result=repr(result))
        return result

    async def drain(self):
        """Wait for every scheduled utterance to finish."""
        await asyncio.sleep(0)
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
            await asyncio.sleep(0)

    # ── Adapter callbacks ─────────────────────────────────────

    def _on_result(self, text: str, confidence: float):
        if self._loop is None:
            logger.warning("utterance_dropped_no_loop", text=text)
            return
        self._loop.call_soon_threadsafe(self._schedule, text, confidence)

    def _schedule(self, text: str, confidence: float):
        task = self._loop.create_task(self.handle_utterance(text, confidence))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _on_event(self, event: PickingEvent):
        if isinstance(event, Announcement):
            self.adapter.speak(event.text, event.language)
        elif isinstance(event, SessionCompleted):
            self.stop()


async def run_voice_session(
    settings: Settings,
    order_id: str,
    worker_id: Optional[str] = None,
    language: Optional[str] = None,
    gateway: Optional[WarehouseGateway] = None,
    adapter: Optional[VoiceIOAdapter] = None,
) -> PickingSessionMachine:
    """
    Pick one order hands-free.

    Builds the configured gateway and voice adapter unless given, opens a
    session through SessionRegistry and listens until the session completes
    or the controller is stopped. The gateway is closed on the way out.
    """
    worker_id = worker_id or settings.worker_id
    gateway = gateway or create_gateway(settings.gateway, current_user_id=worker_id)
    adapter = adapter or create_voice_adapter(settings.voice)
    registry = SessionRegistry(gateway, settings)
    controller: Optional[VoicePickingController] = None

    try:
        order = await gateway.get_order(order_id)
        machine = await registry.open(worker_id, order, language)
        controller = VoicePickingController(machine, adapter)
        session = await controller.start()
        logger.info("voice_session_running", session_id=session.id,
                    order_id=order_id, worker_id=worker_id,
                    listening=controller.is_listening)

        await controller.wait_stopped()
        await controller.drain()
        logger.info("voice_session_finished", session_id=session.id,
                    completed=machine.is_completed, cursor=machine.cursor)
        return machine
    finally:
        if controller is not None:
            controller.stop()
        await gateway.close()
