"""Rentable devices (PlayStation consoles and computers)."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, Optional

from .clock import utcnow
from .errors import ValidationError

MIN_CONTROLLERS = 1
MAX_CONTROLLERS = 4


class DeviceType(str, Enum):
    PLAYSTATION = "playstation"
    COMPUTER = "computer"


class DeviceStatus(str, Enum):
    AVAILABLE = "available"
    ACTIVE = "active"
    MAINTENANCE = "maintenance"


NUMBER_PREFIX = {DeviceType.PLAYSTATION: "ps", DeviceType.COMPUTER: "pc"}


@dataclass
class Device:
    device_id: str
    name: str
    number: str
    device_type: DeviceType = DeviceType.PLAYSTATION
    status: DeviceStatus = DeviceStatus.AVAILABLE
    controllers: int = 2
    hourly_rate: Optional[float] = None
    playstation_rates: Optional[Dict[int, float]] = None
    organization_id: str = "default"
    created_at: datetime = field(default_factory=utcnow)

    def validate(self) -> None:
        """Exactly one pricing mode, consistent with the device type."""
        if not self.name or not self.name.strip():
            raise ValidationError("Device name is required")
        if not MIN_CONTROLLERS <= self.controllers <= MAX_CONTROLLERS:
            raise ValidationError(
                f"Controller capacity must be between {MIN_CONTROLLERS} and {MAX_CONTROLLERS}"
            )
        if self.device_type == DeviceType.COMPUTER:
            if self.playstation_rates:
                raise ValidationError("Computers are priced with a single hourly rate")
            if self.hourly_rate is None or self.hourly_rate < 0:
                raise ValidationError("Computer hourly rate must be a non-negative number")
            return
        if self.hourly_rate is not None:
            raise ValidationError("PlayStation devices are priced per controller count")
        validate_playstation_rates(self.playstation_rates)


def validate_playstation_rates(rates: Optional[Dict[int, float]]) -> Dict[int, float]:
    if not rates:
        raise ValidationError("PlayStation rates are required for controller counts 1-4")
    normalized = {int(k): v for k, v in rates.items()}
    expected = set(range(MIN_CONTROLLERS, MAX_CONTROLLERS + 1))
    missing = expected - set(normalized)
    if missing:
        raise ValidationError(
            f"PlayStation rates missing controller counts: {sorted(missing)}"
        )
    extra = set(normalized) - expected
    if extra:
        raise ValidationError(f"Unsupported controller counts in rates: {sorted(extra)}")
    for count, rate in normalized.items():
        if rate is None or float(rate) < 0:
            raise ValidationError(f"Rate for {count} controllers must be non-negative")
    return {count: float(rate) for count, rate in normalized.items()}


def normalize_device_number(
    device_type: DeviceType, number: Optional[str], existing: Iterable[str] = ()
) -> str:
    """Return a type-prefixed device number (``ps3``, ``pc12``).

    With no number the next free one for the type is assigned.
    """
    prefix = NUMBER_PREFIX[device_type]
    if not number:
        highest = 0
        for value in existing:
            if not value.startswith(prefix):
                continue
            digits = re.sub(r"[^0-9]", "", value)
            if digits:
                highest = max(highest, int(digits))
        return f"{prefix}{highest + 1}"

    number = str(number).strip()
    if number.startswith(("ps", "pc")):
        return number
    digits = re.sub(r"[^0-9]", "", number)
    if not digits or int(digits) <= 0:
        raise ValidationError("Device number must be greater than 0")
    return f"{prefix}{int(digits)}"
