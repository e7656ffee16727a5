"""
FastAPI Application — HTTP access to voice picking sessions.

Provides:
- Session lifecycle: open an order, submit utterances or button commands,
  step back, switch language, inspect state
- Order listing and warehouse metrics for supervisor screens
- Spoken command reference per language

Rendering is left to the client; every response carries the announcement
text the client should display or speak.
"""
from __future__ import annotations

import structlog
import logging
from typing import Any, Optional
from contextlib import asynccontextmanager

# Load .env before any config is read
from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from config.settings import Settings, get_settings
from core.errors import (
    EmptyOrderError, GatewayError, NotFoundError, SessionStateError, UnsupportedLanguageError,
)
from gateway.base import WarehouseGateway
from gateway.factory import create_gateway
from models.schemas import CommandAction, OrderStatus, ParsedCommand
from picking.registry import SessionRegistry
from picking.state_machine import PickingSessionMachine, StepResult
from voice.lexicon import CommandLexicon

logger = structlog.get_logger()


# ──────────────────────────────────────────────────────────────
#  Request/Response Models
# ──────────────────────────────────────────────────────────────

class OpenSessionRequest(BaseModel):
    order_id: str
    worker_id: str = ""
    language: str = ""


class UtteranceRequest(BaseModel):
    text: str
    confidence: float = Field(ge=0.0, le=1.0)


class CommandRequest(BaseModel):
    quantity: int = Field(default=1, ge=0)


class LanguageRequest(BaseModel):
    language: str


def _session_view(machine: PickingSessionMachine) -> dict[str, Any]:
    current = machine.current_item
    return {
        "session": machine.session.model_dump(mode="json") if machine.session else None,
        "state": machine.state.value,
        "cursor": machine.cursor,
        "language": machine.language,
        "current_item": current.model_dump(mode="json") if current else None,
        "items": [i.model_dump(mode="json") for i in machine.items],
    }


def _step_view(machine: PickingSessionMachine, result: Optional[StepResult]) -> dict[str, Any]:
    view = _session_view(machine)
    if result is None:
        view.update({"announcement": None, "applied": False, "rejection": None, "action": None})
        return view
    view.update({
        "announcement": result.announcement.model_dump(mode="json") if result.announcement else None,
        "applied": result.applied,
        "rejection": result.rejection.value if result.rejection else None,
        "action": result.command.action.value if result.command else None,
    })
    return view


def configure_logging(debug: bool):
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.DEBUG if debug else logging.INFO
        ),
    )


def create_app(
    settings: Optional[Settings] = None,
    gateway: Optional[WarehouseGateway] = None,
) -> FastAPI:
    settings = settings or get_settings()
    gateway = gateway or create_gateway(settings.gateway, current_user_id=settings.worker_id)
    registry = SessionRegistry(gateway, settings)
    lexicon = CommandLexicon()
    configure_logging(settings.debug)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("voicepick_started",
                    gateway=type(gateway).__name__,
                    language=settings.voice.language)
        yield
        await gateway.close()
        logger.info("voicepick_stopped")

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Voice-directed order picking",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _machine(session_id: str) -> PickingSessionMachine:
        machine = registry.get(session_id)
        if machine is None:
            raise HTTPException(404, "Session not found")
        return machine

    # ══════════════════════════════════════════════════════════
    #  HEALTH
    # ══════════════════════════════════════════════════════════

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "gateway": type(gateway).__name__,
            "active_sessions": len(registry.active_sessions()),
            "languages": lexicon.languages,
        }

    # ══════════════════════════════════════════════════════════
    #  ORDERS & METRICS
    # ══════════════════════════════════════════════════════════

    @app.get("/api/v1/orders")
    async def list_orders(
        warehouse_id: str = Query(default=""),
        status: Optional[OrderStatus] = Query(default=None),
    ):
        try:
            orders = await gateway.get_orders(warehouse_id or settings.warehouse_id, status)
        except GatewayError as e:
            raise HTTPException(503, str(e))
        return [o.model_dump(mode="json") for o in orders]

    @app.get("/api/v1/metrics")
    async def metrics(warehouse_id: str = Query(default="")):
        try:
            result = await gateway.get_warehouse_metrics(warehouse_id or settings.warehouse_id)
        except GatewayError as e:
            raise HTTPException(503, str(e))
        return result.model_dump(mode="json")

    @app.get("/api/v1/voice/commands/{language}")
    async def voice_commands(language: str):
        try:
            return lexicon.command_reference(language)
        except UnsupportedLanguageError as e:
            raise HTTPException(404, str(e))

    # ══════════════════════════════════════════════════════════
    #  SESSIONS
    # ══════════════════════════════════════════════════════════

    @app.post("/api/v1/sessions", status_code=201)
    async def open_session(req: OpenSessionRequest):
        try:
            order = await gateway.get_order(req.order_id)
            machine = await registry.open(
                req.worker_id or settings.worker_id, order, req.language or None,
            )
        except NotFoundError as e:
            raise HTTPException(404, str(e))
        except (EmptyOrderError, UnsupportedLanguageError) as e:
            raise HTTPException(422, str(e))
        except SessionStateError as e:
            raise HTTPException(409, str(e))
        except GatewayError as e:
            raise HTTPException(503, str(e))

        view = _session_view(machine)
        history = machine.events.history
        view["announcement"] = history[-1].model_dump(mode="json") if history else None
        return view

    @app.get("/api/v1/sessions/{session_id}")
    async def get_session(session_id: str):
        return _session_view(_machine(session_id))

    @app.post("/api/v1/sessions/{session_id}/utterances")
    async def submit_utterance(session_id: str, req: UtteranceRequest):
        machine = _machine(session_id)
        result = await machine.submit_utterance(req.text, req.confidence)
        return _step_view(machine, result)

    @app.post("/api/v1/sessions/{session_id}/commands/{action}")
    async def submit_command(session_id: str, action: CommandAction, req: Optional[CommandRequest] = None):
        machine = _machine(session_id)
        command = ParsedCommand(
            action=action,
            quantity=req.quantity if req else 1,
            language=machine.language,
        )
        result = await machine.submit_command(command)
        return _step_view(machine, result)

    @app.post("/api/v1/sessions/{session_id}/previous")
    async def previous(session_id: str):
        machine = _machine(session_id)
        try:
            result = machine.previous()
        except SessionStateError as e:
            raise HTTPException(409, str(e))
        return _step_view(machine, result)

    @app.put("/api/v1/sessions/{session_id}/language")
    async def set_language(session_id: str, req: LanguageRequest):
        machine = _machine(session_id)
        try:
            result = machine.set_language(req.language)
        except UnsupportedLanguageError as e:
            raise HTTPException(422, str(e))
        return _step_view(machine, result)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
