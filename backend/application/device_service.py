"""Device registry: numbering, pricing and status."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional
from uuid import uuid4

from app.config import AppConfig
from domain.clock import Clock, utcnow
from domain.device import (
    Device,
    DeviceStatus,
    DeviceType,
    normalize_device_number,
    validate_playstation_rates,
)
from domain.errors import NotFoundError, StateConflictError, ValidationError
from domain.rates import RateTable
from infrastructure.repository import VenueRepository

logger = logging.getLogger(__name__)


class DeviceService:
    def __init__(self, config: AppConfig, repository: VenueRepository, clock: Clock = utcnow):
        self.config = config
        self.repository = repository
        self.clock = clock

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    def list_devices(self, organization_id: Optional[str] = None) -> List[Device]:
        return list(self.repository.list_devices(organization_id))

    def get_device(self, device_id: str) -> Device:
        device = self.repository.get_device(device_id)
        if device is None:
            raise NotFoundError(f"Device {device_id} not found")
        return device

    def create_device(
        self,
        name: str,
        device_type: str,
        number: Optional[str] = None,
        controllers: int = 2,
        hourly_rate: Optional[float] = None,
        playstation_rates: Optional[Dict[Any, float]] = None,
        organization_id: Optional[str] = None,
    ) -> Device:
        """Register a device; missing rates fall back to the configured defaults."""
        try:
            device_type = DeviceType(device_type)
        except ValueError:
            raise ValidationError(f"Unknown device type: {device_type}") from None
        organization_id = organization_id or self.config.default_organization

        existing = [device.number for device in self.repository.list_devices(organization_id)]
        number = normalize_device_number(device_type, number, existing)
        if number in existing:
            raise StateConflictError(f"Device number {number} is already registered")

        if hourly_rate is None and not playstation_rates:
            pricing = RateTable.from_defaults(device_type, self.config.default_rates).as_device_pricing()
            hourly_rate = pricing["hourly_rate"]
            playstation_rates = pricing["playstation_rates"]
        elif playstation_rates:
            playstation_rates = validate_playstation_rates(playstation_rates)

        device = Device(
            device_id=str(uuid4()),
            name=(name or "").strip(),
            number=number,
            device_type=device_type,
            controllers=controllers,
            hourly_rate=hourly_rate,
            playstation_rates=playstation_rates,
            organization_id=organization_id,
            created_at=self.clock(),
        )
        device.validate()
        self.repository.save_device(device)
        logger.info("Registered %s device %s (%s)", device_type.value, number, device.name)
        return device

    def update_device(
        self,
        device_id: str,
        name: Optional[str] = None,
        status: Optional[str] = None,
        controllers: Optional[int] = None,
        hourly_rate: Optional[float] = None,
        playstation_rates: Optional[Dict[Any, float]] = None,
    ) -> Device:
        device = self.get_device(device_id)
        if name is not None:
            device.name = name.strip()
        if status is not None:
            try:
                device.status = DeviceStatus(status)
            except ValueError:
                raise ValidationError(f"Unknown device status: {status}") from None
        if controllers is not None:
            device.controllers = controllers
        if hourly_rate is not None:
            device.hourly_rate = hourly_rate
        if playstation_rates is not None:
            device.playstation_rates = validate_playstation_rates(playstation_rates)
        device.validate()
        self.repository.save_device(device)
        return device
