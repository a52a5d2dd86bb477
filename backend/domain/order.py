"""Order line items: billed alongside sessions, priced independently."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from .clock import utcnow


class OrderStatus(str, Enum):
    PENDING = "pending"
    CANCELLED = "cancelled"


@dataclass
class Order:
    order_id: str
    amount: float
    description: str = ""
    status: OrderStatus = OrderStatus.PENDING
    bill_id: Optional[str] = None
    organization_id: str = "default"
    created_at: datetime = field(default_factory=utcnow)

    @property
    def billable_amount(self) -> float:
        return 0.0 if self.status == OrderStatus.CANCELLED else float(self.amount)
