"""Per-device pricing: (device type, controller count) -> hourly rate."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from .device import (
    MAX_CONTROLLERS,
    MIN_CONTROLLERS,
    Device,
    DeviceType,
    validate_playstation_rates,
)
from .errors import ValidationError


@dataclass(frozen=True)
class RateTable:
    """Hourly pricing for one device.

    Computers carry a single ``hourly_rate``; PlayStation consoles carry a
    mapping from controller count (1-4) to hourly rate.
    """

    device_type: DeviceType
    hourly_rate: Optional[float] = None
    playstation_rates: Optional[Mapping[int, float]] = None

    def rate(self, device_type: DeviceType, controllers: int) -> float:
        if DeviceType(device_type) != self.device_type:
            raise ValidationError(
                f"Rate table priced for {self.device_type.value}, not {DeviceType(device_type).value}"
            )
        if self.device_type == DeviceType.COMPUTER:
            return float(self.hourly_rate or 0.0)
        if not MIN_CONTROLLERS <= controllers <= MAX_CONTROLLERS:
            raise ValidationError(
                f"Controller count must be between {MIN_CONTROLLERS} and {MAX_CONTROLLERS}"
            )
        return float(self.playstation_rates[controllers])

    @classmethod
    def from_device(cls, device: Device) -> "RateTable":
        if device.device_type == DeviceType.COMPUTER:
            return cls(DeviceType.COMPUTER, hourly_rate=float(device.hourly_rate or 0.0))
        return cls(
            DeviceType.PLAYSTATION,
            playstation_rates=validate_playstation_rates(device.playstation_rates),
        )

    @classmethod
    def from_defaults(cls, device_type: DeviceType, defaults: Dict[str, Any]) -> "RateTable":
        """Build the configured fallback table (``billing.default_rates``)."""
        device_type = DeviceType(device_type)
        defaults = defaults or {}
        key = device_type.value
        if defaults.get(key) is None:
            raise ValidationError(f"No default {key} rates configured under billing.default_rates")
        if device_type == DeviceType.COMPUTER:
            hourly_rate = float(defaults[key])
            if hourly_rate < 0:
                raise ValidationError("Default computer rate cannot be negative")
            return cls(device_type, hourly_rate=hourly_rate)
        return cls(device_type, playstation_rates=validate_playstation_rates(defaults[key]))

    def as_device_pricing(self) -> Dict[str, Any]:
        """Pricing fields to stamp on a device created without rates."""
        if self.device_type == DeviceType.COMPUTER:
            return {"hourly_rate": self.hourly_rate, "playstation_rates": None}
        return {"hourly_rate": None, "playstation_rates": dict(self.playstation_rates)}
