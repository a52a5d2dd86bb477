"""Billing service: bill creation, aggregation, payments and emptied-bill disposal."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Tuple
from uuid import uuid4

from app.config import AppConfig
from domain.bill import Bill, BillType, Payment, generate_bill_number
from domain.clock import Clock, utcnow
from domain.errors import NotFoundError, ValidationError
from domain.order import Order, OrderStatus
from domain.session import GameSession
from infrastructure.repository import VenueRepository

logger = logging.getLogger(__name__)


class BillingService:
    def __init__(
        self,
        config: AppConfig,
        repository: VenueRepository,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.repository = repository
        self.clock = clock

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    # Queries --------------------------------------------------------------
    def get_bill(self, bill_id: str) -> Bill:
        bill = self.repository.get_bill(bill_id)
        if not bill:
            raise NotFoundError(f"Bill {bill_id} not found")
        return bill

    def list_bills(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        table_id: Optional[str] = None,
    ) -> List[Bill]:
        return list(self.repository.list_bills(organization_id, status, table_id))

    def list_bill_orders(self, bill: Bill) -> List[Order]:
        return self.repository.list_orders(bill.order_ids)

    def find_open_bill_for_table(
        self, organization_id: str, table_id: str, exclude: Iterable[str] = ()
    ) -> Optional[Bill]:
        excluded = set(exclude)
        candidates = [
            bill
            for bill in self.repository.list_open_bills(organization_id)
            if bill.table_id == table_id and bill.bill_id not in excluded
        ]
        if len(candidates) > 1:
            logger.warning(
                "Table %s has %d open bills (%s); using the newest",
                table_id,
                len(candidates),
                ", ".join(bill.bill_number for bill in candidates),
            )
        return candidates[0] if candidates else None

    # Creation -------------------------------------------------------------
    def create_bill(
        self,
        organization_id: str,
        customer_name: str,
        table_id: Optional[str] = None,
        bill_type: BillType = BillType.CAFE,
        notes: str = "",
    ) -> Bill:
        now = self.clock()
        bill = Bill(
            bill_id=str(uuid4()),
            bill_number=generate_bill_number(now, self.repository.list_bill_numbers()),
            customer_name=customer_name,
            organization_id=organization_id,
            table_id=table_id,
            bill_type=bill_type,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self.repository.add_bill(bill)
        logger.info("Created bill %s for %s", bill.bill_number, customer_name)
        return bill

    # Aggregation ----------------------------------------------------------
    def recalculate_bill(self, bill: Bill) -> Bill:
        """Recompute totals from the stored members and persist the bill."""
        session_costs = []
        for session_id in bill.session_ids:
            session = self.repository.get_session(session_id)
            if session is None:
                logger.warning("Bill %s references missing session %s", bill.bill_number, session_id)
                continue
            session_costs.append(session.final_cost)
        order_amounts = [order.billable_amount for order in self.repository.list_orders(bill.order_ids)]
        bill.recalculate(session_costs, order_amounts, self.clock())
        self.repository.update_bill(bill)
        return bill

    def recalculate_bill_by_id(self, bill_id: Optional[str]) -> Optional[Bill]:
        if not bill_id:
            return None
        bill = self.repository.get_bill(bill_id)
        if bill is None:
            logger.warning("Session points at missing bill %s", bill_id)
            return None
        return self.recalculate_bill(bill)

    # Membership -----------------------------------------------------------
    def attach_session(self, bill: Bill, session: GameSession) -> Bill:
        """Point ``session`` at ``bill`` and add it to the bill's member set."""
        bill.add_session(session.session_id)
        session.bill_id = bill.bill_id
        session.updated_at = self.clock()
        self.repository.update_session(session)
        return self.recalculate_bill(bill)

    def detach_session(self, bill: Bill, session_id: str) -> bool:
        removed = bill.remove_session(session_id)
        if removed:
            self.recalculate_bill(bill)
        return removed

    def add_payment(
        self,
        bill_id: str,
        amount: float,
        method: str = "cash",
        reference: Optional[str] = None,
    ) -> Bill:
        if amount is None or amount <= 0:
            raise ValidationError("Payment amount must be positive")
        with self.repository.transaction():
            bill = self.get_bill(bill_id)
            bill.ensure_open()
            self.recalculate_bill(bill)
            now = self.clock()
            bill.record_payment(
                Payment(amount=float(amount), method=method, reference=reference, timestamp=now),
                now,
            )
            self.repository.update_bill(bill)
        logger.info("Recorded %.2f payment on bill %s (status=%s)", amount, bill.bill_number, bill.status.value)
        return bill

    def add_order(self, bill_id: str, amount: float, description: str = "") -> Tuple[Bill, Order]:
        if amount is None or amount <= 0:
            raise ValidationError("Order amount must be positive")
        with self.repository.transaction():
            bill = self.get_bill(bill_id)
            bill.ensure_open()
            order = Order(
                order_id=str(uuid4()),
                amount=float(amount),
                description=description,
                bill_id=bill.bill_id,
                organization_id=bill.organization_id,
                created_at=self.clock(),
            )
            self.repository.save_order(order)
            bill.add_order(order.order_id)
            self.recalculate_bill(bill)
        return bill, order

    def cancel_order(self, bill_id: str, order_id: str) -> Bill:
        """Cancelled orders stay on the bill but no longer count toward it."""
        with self.repository.transaction():
            bill = self.get_bill(bill_id)
            if order_id not in bill.order_ids:
                raise NotFoundError(f"Order {order_id} is not on bill {bill.bill_number}")
            bill.ensure_open()
            order = self.repository.get_order(order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            order.status = OrderStatus.CANCELLED
            self.repository.save_order(order)
            self.recalculate_bill(bill)
        return bill

    # Emptied bills --------------------------------------------------------
    def find_merge_target(self, bill: Bill) -> Optional[Bill]:
        """Another open bill of the same organization: same table first, else newest."""
        candidates = [
            other
            for other in self.repository.list_open_bills(bill.organization_id)
            if other.bill_id != bill.bill_id
        ]
        if not candidates:
            return None
        if bill.table_id:
            same_table = [other for other in candidates if other.table_id == bill.table_id]
            if len(same_table) > 1:
                logger.warning(
                    "Table %s has %d open bills; merging into the newest", bill.table_id, len(same_table)
                )
            if same_table:
                return same_table[0]
        return candidates[0]

    def dispose_empty_bill(
        self, bill: Bill, preferred: Optional[Bill] = None
    ) -> Tuple[str, Optional[Bill]]:
        """Merge an empty bill into an open bill, or delete it when none exists.

        Returns ``("merged", target)`` or ``("deleted", None)``.
        """
        target = preferred if preferred is not None and preferred.is_open else None
        target = target or self.find_merge_target(bill)
        now = self.clock()

        # No session may keep pointing at a bill that is about to disappear.
        for session in self.repository.list_sessions(bill.organization_id):
            if session.bill_id != bill.bill_id:
                continue
            if target is not None:
                session.bill_id = target.bill_id
                target.add_session(session.session_id)
            else:
                session.bill_id = None
            session.updated_at = now
            self.repository.update_session(session)
            logger.warning("Repointed session %s away from emptied bill %s", session.session_id, bill.bill_number)

        if target is not None:
            target.absorb(bill, now)
            self.recalculate_bill(target)
            self.repository.delete_bill(bill.bill_id)
            logger.info("Merged empty bill %s into %s", bill.bill_number, target.bill_number)
            return "merged", target

        self.repository.delete_bill(bill.bill_id)
        logger.info("Deleted empty bill %s", bill.bill_number)
        return "deleted", None
