"""Device rental session: lifecycle state machine + time-based cost accrual."""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .clock import utcnow
from .device import MAX_CONTROLLERS, MIN_CONTROLLERS, DeviceType
from .errors import StateConflictError, ValidationError

if TYPE_CHECKING:
    from .rates import RateTable

MS_PER_MINUTE = 60_000


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class ControllerPeriod:
    """A contiguous span during which the controller count was constant."""

    controllers: int
    started_at: datetime
    ended_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


def round_up_cost(raw_cost: float) -> int:
    """Round up to the next whole currency unit; never down."""
    if raw_cost <= 0:
        return 0
    # Strip float noise such as 10.000000000000002 before rounding up.
    return max(1, int(math.ceil(round(raw_cost, 6))))


def accrue(started_at: datetime, ended_at: datetime, hourly_rate: float) -> int:
    minutes = _minutes_between(started_at, ended_at)
    if minutes <= 0:
        return 0
    return round_up_cost(minutes * hourly_rate / 60)


def _minutes_between(started_at: datetime, ended_at: datetime) -> float:
    delta_ms = (ended_at - started_at).total_seconds() * 1000
    return delta_ms / MS_PER_MINUTE


@dataclass
class GameSession:
    session_id: str
    device_number: str
    device_name: str
    device_type: DeviceType
    start_time: datetime
    device_id: Optional[str] = None
    customer_name: str = ""
    end_time: Optional[datetime] = None
    status: SessionStatus = SessionStatus.ACTIVE
    controllers: int = 1
    controllers_history: List[ControllerPeriod] = field(default_factory=list)
    total_cost: float = 0.0
    discount: float = 0.0
    final_cost: float = 0.0
    notes: str = ""
    bill_id: Optional[str] = None
    organization_id: str = "default"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if not self.controllers_history and self.status == SessionStatus.ACTIVE:
            self.controllers_history.append(
                ControllerPeriod(controllers=self.controllers, started_at=self.start_time)
            )

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE

    # Lifecycle -------------------------------------------------------------
    def update_controllers(self, controllers: int, now: datetime) -> None:
        """Close the open interval at ``now`` and open a new one with the new count."""
        if not self.is_active:
            raise StateConflictError("Cannot change controllers on a session that is not active")
        validate_controllers(controllers)

        if self.controllers_history:
            current = self.controllers_history[-1]
            if current.is_open:
                current.ended_at = now
        self.controllers_history.append(ControllerPeriod(controllers=controllers, started_at=now))
        self.controllers = controllers
        self.updated_at = now

    def end(self, rate_table: "RateTable", now: datetime) -> None:
        if not self.is_active:
            raise StateConflictError("Session is not active")

        self.status = SessionStatus.COMPLETED
        self.end_time = now
        if self.controllers_history:
            for period in self.controllers_history:
                if period.is_open:
                    period.ended_at = self.end_time
        else:
            self.controllers_history = [
                ControllerPeriod(
                    controllers=self.controllers,
                    started_at=self.start_time,
                    ended_at=self.end_time,
                )
            ]
        self.updated_at = now
        self.calculate_cost(rate_table, now)

    def adjust_start_time(self, start_time: datetime, now: datetime) -> None:
        """Correct a mistyped start; the first interval moves with it."""
        if start_time > now:
            raise ValidationError("Start time cannot be in the future")
        if self.end_time and start_time >= self.end_time:
            raise ValidationError("Start time must be before the session end")
        if self.controllers_history:
            first = self.controllers_history[0]
            limit = first.ended_at or self.end_time or now
            if len(self.controllers_history) > 1 and start_time >= limit:
                raise ValidationError("Start time must be before the first controller change")
            first.started_at = start_time
        self.start_time = start_time
        self.updated_at = now

    def set_discount(self, discount: float, now: datetime) -> None:
        if discount < 0:
            raise ValidationError("Discount cannot be negative")
        self.discount = float(discount)
        self.final_cost = self.total_cost - self.discount
        self.updated_at = now

    # Accrual ---------------------------------------------------------------
    def calculate_cost(self, rate_table: "RateTable", now: datetime) -> float:
        """Recompute ``total_cost``/``final_cost`` and return ``final_cost``."""
        self.total_cost = float(self._accrued_total(rate_table, now))
        self.final_cost = self.total_cost - self.discount
        return self.final_cost

    def calculate_current_cost(self, rate_table: "RateTable", now: datetime) -> float:
        """Live cost for display; no side effects, stored total once ended."""
        if not self.is_active:
            return self.total_cost
        return float(self._accrued_total(rate_table, now))

    def cost_breakdown(self, rate_table: "RateTable", now: datetime) -> Dict[str, Any]:
        rows: List[Dict[str, Any]] = []
        for started_at, ended_at, controllers in self._billable_spans(now):
            minutes = _minutes_between(started_at, ended_at)
            hourly_rate = rate_table.rate(self.device_type, controllers)
            rows.append(
                {
                    "controllers": controllers,
                    "hours": int(minutes // 60),
                    "minutes": int(minutes % 60),
                    "hourlyRate": hourly_rate,
                    "cost": accrue(started_at, ended_at, hourly_rate),
                    "from": started_at,
                    "to": ended_at,
                }
            )
        return {"totalCost": sum(row["cost"] for row in rows), "breakdown": rows}

    def _accrued_total(self, rate_table: "RateTable", now: datetime) -> int:
        return sum(
            accrue(started_at, ended_at, rate_table.rate(self.device_type, controllers))
            for started_at, ended_at, controllers in self._billable_spans(now)
        )

    def _billable_spans(self, now: datetime) -> List[tuple]:
        open_end = self.end_time or now
        spans = []
        for period in self.controllers_history:
            ended_at = period.ended_at or open_end
            if _minutes_between(period.started_at, ended_at) > 0:
                spans.append((period.started_at, ended_at, period.controllers))
        if spans:
            return spans
        # Legacy records without usable history: whole session at the current count.
        if _minutes_between(self.start_time, open_end) > 0:
            return [(self.start_time, open_end, self.controllers)]
        return []


def validate_controllers(controllers: Any) -> int:
    if isinstance(controllers, bool) or not isinstance(controllers, int):
        raise ValidationError("Controller count must be an integer")
    if not MIN_CONTROLLERS <= controllers <= MAX_CONTROLLERS:
        raise ValidationError(
            f"Controller count must be between {MIN_CONTROLLERS} and {MAX_CONTROLLERS}"
        )
    return controllers
