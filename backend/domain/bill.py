"""Bill aggregate: sessions + order line items under one payable total."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, List, Optional

from .clock import utcnow
from .errors import StateConflictError, ValidationError

SETTLE_TOLERANCE = 0.01


class BillStatus(str, Enum):
    DRAFT = "draft"
    PARTIAL = "partial"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


OPEN_STATUSES = (BillStatus.DRAFT, BillStatus.PARTIAL, BillStatus.OVERDUE)


class BillType(str, Enum):
    CAFE = "cafe"
    PLAYSTATION = "playstation"
    COMPUTER = "computer"


@dataclass
class Payment:
    amount: float
    method: str = "cash"
    reference: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass
class Bill:
    bill_id: str
    bill_number: str
    customer_name: str = ""
    organization_id: str = "default"
    table_id: Optional[str] = None
    bill_type: BillType = BillType.CAFE
    status: BillStatus = BillStatus.DRAFT
    subtotal: float = 0.0
    discount: float = 0.0
    discount_percentage: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    paid: float = 0.0
    remaining: float = 0.0
    session_ids: List[str] = field(default_factory=list)
    order_ids: List[str] = field(default_factory=list)
    payments: List[Payment] = field(default_factory=list)
    notes: str = ""
    due_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES

    @property
    def is_empty(self) -> bool:
        return not self.session_ids and not self.order_ids

    # Membership ------------------------------------------------------------
    def add_session(self, session_id: str) -> bool:
        """Add once; returns False when already a member."""
        if session_id in self.session_ids:
            return False
        self.session_ids.append(session_id)
        return True

    def remove_session(self, session_id: str) -> bool:
        """Drop every occurrence; returns True when something was removed."""
        before = len(self.session_ids)
        self.session_ids = [sid for sid in self.session_ids if sid != session_id]
        return len(self.session_ids) != before

    def add_order(self, order_id: str) -> bool:
        if order_id in self.order_ids:
            return False
        self.order_ids.append(order_id)
        return True

    def remove_order(self, order_id: str) -> bool:
        before = len(self.order_ids)
        self.order_ids = [oid for oid in self.order_ids if oid != order_id]
        return len(self.order_ids) != before

    def ensure_open(self) -> None:
        if not self.is_open:
            raise StateConflictError(
                f"Bill {self.bill_number} is {self.status.value} and cannot be modified"
            )

    # Totals ----------------------------------------------------------------
    def recalculate(
        self,
        session_costs: Iterable[float],
        order_amounts: Iterable[float],
        now: datetime,
    ) -> None:
        """Roll member costs up into subtotal/total/remaining and derive status."""
        self.subtotal = float(sum(session_costs)) + float(sum(order_amounts))
        if self.discount_percentage and self.discount_percentage > 0:
            self.discount = float(round(self.subtotal * self.discount_percentage / 100))
        self.total = max(0.0, self.subtotal + (self.tax or 0.0) - (self.discount or 0.0))
        self.remaining = max(0.0, self.total - self.paid)
        self._derive_status(now)
        self.updated_at = now

    def record_payment(self, payment: Payment, now: datetime) -> None:
        if payment.amount <= 0:
            raise ValidationError("Payment amount must be positive")
        self.ensure_open()
        self.payments.append(payment)
        self.paid += payment.amount
        if self.paid > self.total:
            # Overpayment is capped; change is handed back at the counter.
            self.paid = self.total
        self.remaining = max(0.0, self.total - self.paid)
        self._derive_status(now)
        self.updated_at = now

    def absorb(self, other: "Bill", now: datetime) -> None:
        """Fold an emptied bill's notes, payments and amounts into this one."""
        note = f"Merged from {other.bill_number}"
        if other.notes:
            note = f"{note}: {other.notes}"
        self.notes = f"{self.notes}\n{note}" if self.notes else note
        self.payments.extend(other.payments)
        self.paid += other.paid
        if not self.discount_percentage:
            self.discount += other.discount
        for order_id in other.order_ids:
            self.add_order(order_id)
        for session_id in other.session_ids:
            self.add_session(session_id)
        self.updated_at = now

    def _derive_status(self, now: datetime) -> None:
        if self.status == BillStatus.CANCELLED:
            return
        if self.paid > 0 and self.remaining <= SETTLE_TOLERANCE:
            self.status = BillStatus.PAID
            self.remaining = 0.0
        elif self.paid > 0:
            self.status = BillStatus.PARTIAL
        else:
            self.status = BillStatus.DRAFT
        if self.due_date and self.due_date < now and self.status != BillStatus.PAID:
            self.status = BillStatus.OVERDUE


def generate_bill_number(now: datetime, taken: Iterable[str] = ()) -> str:
    """``BILL-yyMMddHHmmssfff`` with a numeric suffix if that number is taken."""
    base = f"BILL-{now.strftime('%y%m%d%H%M%S')}{now.microsecond // 1000:03d}"
    taken = set(taken)
    if base not in taken:
        return base
    suffix = 2
    while f"{base}-{suffix}" in taken:
        suffix += 1
    return f"{base}-{suffix}"
