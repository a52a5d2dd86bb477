"""Session lifecycle endpoints, including table link / unlink / move."""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from application.serializers import serialize_bill, serialize_session
from interfaces import deps
from interfaces.responses import ok

router = APIRouter(prefix="/sessions", tags=["sessions"])


class StartSessionRequest(BaseModel):
    deviceNumber: str
    controllers: Optional[int] = None
    customerName: Optional[str] = None
    billId: Optional[str] = Field(default=None, description="Attach to this open bill")
    tableId: Optional[str] = Field(default=None, description="Attach to the table's open bill")
    organizationId: Optional[str] = None
    notes: str = ""


class ControllersRequest(BaseModel):
    # Range is checked by the session rules so the error matches the envelope.
    controllers: Any


class StartTimeRequest(BaseModel):
    startTime: datetime


class DiscountRequest(BaseModel):
    discount: float


class LinkTableRequest(BaseModel):
    tableId: str


class MoveSessionRequest(BaseModel):
    targetBillId: str


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _session_with_bill(session, bill) -> Dict[str, Any]:
    return {
        "session": serialize_session(session),
        "bill": serialize_bill(bill) if bill else None,
    }


@router.get("")
def list_sessions(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    deviceType: Optional[str] = None,
) -> Dict[str, Any]:
    sessions = deps.session_service.list_sessions(organizationId, status, deviceType)
    return ok([serialize_session(session) for session in sessions])


@router.get("/active")
def list_active_sessions(organizationId: Optional[str] = None) -> Dict[str, Any]:
    sessions = deps.session_service.list_sessions(organizationId, status="active")
    return ok([serialize_session(session) for session in sessions])


@router.post("", status_code=201)
def start_session(payload: StartSessionRequest) -> Dict[str, Any]:
    session, bill = deps.session_service.start_session(
        device_number=payload.deviceNumber,
        controllers=payload.controllers,
        customer_name=payload.customerName,
        bill_id=payload.billId,
        table_id=payload.tableId,
        organization_id=payload.organizationId,
        notes=payload.notes,
    )
    return ok(_session_with_bill(session, bill), "Session started")


@router.get("/{session_id}")
def get_session(session_id: str) -> Dict[str, Any]:
    return ok(serialize_session(deps.session_service.get_session(session_id)))


@router.get("/{session_id}/cost")
def get_session_cost(session_id: str) -> Dict[str, Any]:
    result = deps.session_service.current_cost(session_id)
    rows = [
        {**row, "from": row["from"].isoformat(), "to": row["to"].isoformat()}
        for row in result["breakdown"]
    ]
    return ok(
        {
            "sessionId": session_id,
            "status": result["session"].status.value,
            "currentCost": result["currentCost"],
            "totalCost": result["totalCost"],
            "breakdown": rows,
        }
    )


@router.put("/{session_id}/controllers")
def update_controllers(session_id: str, payload: ControllersRequest) -> Dict[str, Any]:
    session = deps.session_service.update_controllers(session_id, payload.controllers)
    return ok(serialize_session(session), "Controllers updated")


@router.put("/{session_id}/update-cost")
def update_cost(session_id: str) -> Dict[str, Any]:
    session, bill = deps.session_service.refresh_cost(session_id)
    return ok(
        {
            "sessionId": session.session_id,
            "currentCost": session.final_cost,
            "totalCost": session.total_cost,
            "billUpdated": bill is not None,
        },
        "Session cost updated",
    )


@router.put("/{session_id}/start-time")
def adjust_start_time(session_id: str, payload: StartTimeRequest) -> Dict[str, Any]:
    session = deps.session_service.adjust_start_time(session_id, _naive_utc(payload.startTime))
    return ok(serialize_session(session), "Start time updated")


@router.put("/{session_id}/discount")
def set_discount(session_id: str, payload: DiscountRequest) -> Dict[str, Any]:
    session = deps.session_service.set_discount(session_id, payload.discount)
    return ok(serialize_session(session), "Discount applied")


@router.put("/{session_id}/end")
def end_session(session_id: str) -> Dict[str, Any]:
    session, bill = deps.session_service.end_session(session_id)
    return ok(_session_with_bill(session, bill), "Session ended")


@router.put("/{session_id}/link-table")
def link_table(session_id: str, payload: LinkTableRequest) -> Dict[str, Any]:
    session, bill = deps.table_service.link_session_to_table(session_id, payload.tableId)
    return ok(_session_with_bill(session, bill), "Session linked to table")


@router.put("/{session_id}/unlink-table")
def unlink_table(session_id: str) -> Dict[str, Any]:
    session, bill = deps.table_service.unlink_session_from_table(session_id)
    return ok(_session_with_bill(session, bill), "Session unlinked from table")


@router.put("/{session_id}/move")
def move_session(session_id: str, payload: MoveSessionRequest) -> Dict[str, Any]:
    session, bill = deps.table_service.move_session_to_bill(session_id, payload.targetBillId)
    return ok(_session_with_bill(session, bill), "Session moved")
