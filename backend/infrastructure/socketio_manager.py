"""Socket.IO push: venue events and bill state for connected dashboards.

    services -> Notifier -> AsyncEventBus -> (handlers here) -> clients
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, TYPE_CHECKING

import socketio

from app.config import get_settings
from application.events import AsyncEventBus, VenueEvent, VenueEventType
from application.serializers import serialize_bill, serialize_session

if TYPE_CHECKING:
    from infrastructure.repository import VenueRepository

logger = logging.getLogger(__name__)

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=get_settings().cors_origins,
    logger=False,
    engineio_logger=False,
)

_repository: Optional["VenueRepository"] = None


def set_repository(repo: "VenueRepository") -> None:
    global _repository
    _repository = repo


# Socket.IO handlers ----------------------------------------------------------

@sio.event
async def connect(sid: str, environ: dict) -> None:
    logger.debug("Client connected: %s", sid)


@sio.event
async def disconnect(sid: str) -> None:
    logger.debug("Client disconnected: %s", sid)


@sio.event
async def subscribe_monitor(sid: str, data: dict = None) -> None:
    """Join the venue-wide room and receive the active sessions right away."""
    await sio.enter_room(sid, "monitor")
    await push_active_sessions()


@sio.event
async def unsubscribe_monitor(sid: str, data: dict = None) -> None:
    await sio.leave_room(sid, "monitor")


@sio.event
async def subscribe_bill(sid: str, data: dict) -> None:
    bill_id = (data or {}).get("billId")
    if not bill_id:
        return
    await sio.enter_room(sid, f"bill:{bill_id}")
    await push_bill_state(bill_id)


# Push functions --------------------------------------------------------------

async def push_bill_state(bill_id: str) -> None:
    if not _repository:
        return
    bill = _repository.get_bill(bill_id)
    if not bill:
        return
    state = serialize_bill(bill)
    await sio.emit("bill_state", state, room=f"bill:{bill_id}")
    await sio.emit("bill_state", state, room="monitor")


async def push_active_sessions() -> None:
    if not _repository:
        return
    sessions = [
        serialize_session(session)
        for session in _repository.list_sessions(status="active")
    ]
    await sio.emit("monitor_update", {"sessions": sessions}, room="monitor")


async def push_venue_event(event: VenueEvent) -> None:
    message: Dict[str, Any] = {
        "id": event.event_id,
        "type": event.event_type.value,
        "organizationId": event.organization_id,
        "time": event.created_at.isoformat(),
        "payload": event.payload,
    }
    await sio.emit("venue_event", message, room="monitor")
    bill_id = event.payload.get("billId")
    if bill_id:
        await push_bill_state(bill_id)
    if event.event_type in (VenueEventType.SESSION_STARTED, VenueEventType.SESSION_ENDED):
        await push_active_sessions()


def register_event_handlers(event_bus: AsyncEventBus) -> None:
    for event_type in VenueEventType:
        event_bus.register_handler(event_type, push_venue_event)
