from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from application.serializers import serialize_device
from interfaces import deps
from interfaces.responses import ok

router = APIRouter(prefix="/devices", tags=["devices"])


class CreateDeviceRequest(BaseModel):
    name: str
    type: str = Field(..., description="playstation | computer")
    number: Optional[str] = Field(default=None, description="Auto-assigned when omitted")
    controllers: int = Field(default=2, ge=1, le=4)
    hourlyRate: Optional[float] = Field(default=None, ge=0)
    playstationRates: Optional[Dict[int, float]] = None
    organizationId: Optional[str] = None


class UpdateDeviceRequest(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    controllers: Optional[int] = Field(default=None, ge=1, le=4)
    hourlyRate: Optional[float] = Field(default=None, ge=0)
    playstationRates: Optional[Dict[int, float]] = None


@router.get("")
def list_devices(organizationId: Optional[str] = None) -> Dict[str, Any]:
    devices = deps.device_service.list_devices(organizationId)
    return ok([serialize_device(device) for device in devices])


@router.post("", status_code=201)
def create_device(payload: CreateDeviceRequest) -> Dict[str, Any]:
    device = deps.device_service.create_device(
        name=payload.name,
        device_type=payload.type,
        number=payload.number,
        controllers=payload.controllers,
        hourly_rate=payload.hourlyRate,
        playstation_rates=payload.playstationRates,
        organization_id=payload.organizationId,
    )
    return ok(serialize_device(device), "Device created")


@router.get("/{device_id}")
def get_device(device_id: str) -> Dict[str, Any]:
    return ok(serialize_device(deps.device_service.get_device(device_id)))


@router.patch("/{device_id}")
def update_device(device_id: str, payload: UpdateDeviceRequest) -> Dict[str, Any]:
    device = deps.device_service.update_device(
        device_id,
        name=payload.name,
        status=payload.status,
        controllers=payload.controllers,
        hourly_rate=payload.hourlyRate,
        playstation_rates=payload.playstationRates,
    )
    return ok(serialize_device(device), "Device updated")
