"""Session lifecycle workflows: start, controller changes, cost refresh, end."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from app.config import AppConfig
from application.billing_service import BillingService
from application.events import Notifier, VenueEventType
from domain.bill import Bill, BillType
from domain.clock import Clock, utcnow
from domain.device import Device, DeviceStatus
from domain.errors import NotFoundError, StateConflictError, ValidationError
from domain.rates import RateTable
from domain.session import GameSession, validate_controllers
from infrastructure.repository import VenueRepository

logger = logging.getLogger(__name__)


def default_customer_name(device_name: str) -> str:
    return f"Customer ({device_name})"


class SessionService:
    def __init__(
        self,
        config: AppConfig,
        repository: VenueRepository,
        billing_service: BillingService,
        notifier: Optional[Notifier] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.repository = repository
        self.billing_service = billing_service
        self.notifier = notifier or Notifier(None, enabled=False)
        self.clock = clock

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    # Queries --------------------------------------------------------------
    def get_session(self, session_id: str) -> GameSession:
        session = self.repository.get_session(session_id)
        if not session:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def list_sessions(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> List[GameSession]:
        return list(self.repository.list_sessions(organization_id, status, device_type))

    def rate_table_for(self, session: GameSession) -> RateTable:
        """Device pricing, or the configured defaults when the device is gone."""
        device = None
        if session.device_id:
            device = self.repository.get_device(session.device_id)
        if device is None:
            device = self.repository.find_device_by_number(
                session.device_number, session.organization_id
            )
        if device is not None and device.device_type == session.device_type:
            return RateTable.from_device(device)
        logger.info(
            "No device record for %s; pricing session %s with default rates",
            session.device_number,
            session.session_id,
        )
        return RateTable.from_defaults(session.device_type, self.config.default_rates)

    def current_cost(self, session_id: str) -> Dict[str, Any]:
        session = self.get_session(session_id)
        rate_table = self.rate_table_for(session)
        now = self.clock()
        breakdown = session.cost_breakdown(rate_table, now)
        return {
            "session": session,
            "currentCost": session.calculate_current_cost(rate_table, now),
            "breakdown": breakdown["breakdown"],
            "totalCost": breakdown["totalCost"],
        }

    # Start ----------------------------------------------------------------
    def start_session(
        self,
        device_number: str,
        controllers: Optional[int] = None,
        customer_name: Optional[str] = None,
        bill_id: Optional[str] = None,
        table_id: Optional[str] = None,
        organization_id: Optional[str] = None,
        notes: str = "",
    ) -> Tuple[GameSession, Bill]:
        """Open a session on a device and attach it to a bill.

        Without ``bill_id``/``table_id`` a fresh bill is created for the
        session. With ``bill_id`` the bill must be open and hold no other
        active session. With ``table_id`` the table's open bill is reused,
        or a new bill is opened for the table.
        """
        organization_id = organization_id or self.config.default_organization
        controllers = validate_controllers(1 if controllers is None else controllers)
        if bill_id and table_id:
            raise ValidationError("Pass either billId or tableId, not both")

        device = self.repository.find_device_by_number(device_number, organization_id)
        if device is None:
            raise NotFoundError(f"Device {device_number} not found")
        if device.status == DeviceStatus.MAINTENANCE:
            raise StateConflictError(f"Device {device.number} is under maintenance")
        if self.repository.find_active_session_by_device(device.number):
            raise StateConflictError(f"Device {device.number} is already in use")

        bill = None
        if bill_id:
            bill = self.billing_service.get_bill(bill_id)
            if bill.organization_id != organization_id:
                raise ValidationError(f"Bill {bill.bill_number} belongs to another organization")
            bill.ensure_open()
            self._ensure_no_active_session(bill)
        table = None
        if table_id:
            table = self.repository.get_table(table_id)
            if table is None:
                raise NotFoundError(f"Table {table_id} not found")
            if table.organization_id != organization_id:
                raise ValidationError(f"Table {table.display_name} belongs to another organization")

        now = self.clock()
        session = GameSession(
            session_id=str(uuid4()),
            device_id=device.device_id,
            device_number=device.number,
            device_name=device.name,
            device_type=device.device_type,
            customer_name=(customer_name or "").strip() or default_customer_name(device.name),
            start_time=now,
            controllers=controllers,
            notes=notes,
            organization_id=organization_id,
            created_at=now,
            updated_at=now,
        )

        with self.repository.transaction():
            if bill is None and table is not None:
                bill = self.billing_service.find_open_bill_for_table(organization_id, table.table_id)
            if bill is None:
                bill = self.billing_service.create_bill(
                    organization_id=organization_id,
                    customer_name=default_customer_name(device.name),
                    table_id=table.table_id if table else None,
                    bill_type=BillType(device.device_type.value),
                    notes=f"Session bill {device.name} - {device.device_type.value}",
                )
            self.repository.add_session(session)
            bill = self.billing_service.attach_session(bill, session)

        self._set_device_status(device, DeviceStatus.ACTIVE)
        logger.info(
            "Started session %s on %s with %d controller(s), bill %s",
            session.session_id,
            device.number,
            controllers,
            bill.bill_number,
        )
        self.notifier.notify(
            VenueEventType.SESSION_STARTED,
            organization_id,
            {"sessionId": session.session_id, "deviceNumber": device.number, "billId": bill.bill_id},
        )
        return session, bill

    # Mutations ------------------------------------------------------------
    def update_controllers(self, session_id: str, controllers: Any) -> GameSession:
        validate_controllers(controllers)
        session = self.get_session(session_id)
        now = self.clock()
        session.update_controllers(controllers, now)
        session.calculate_cost(self.rate_table_for(session), now)
        self._persist_with_bill(session)
        logger.info("Session %s now uses %d controller(s)", session_id, controllers)
        return session

    def refresh_cost(self, session_id: str) -> Tuple[GameSession, Optional[Bill]]:
        session = self.get_session(session_id)
        if not session.is_active:
            raise StateConflictError("Cannot refresh the cost of a session that is not active")
        session.calculate_cost(self.rate_table_for(session), self.clock())
        bill = self._persist_with_bill(session)
        return session, bill

    def adjust_start_time(self, session_id: str, start_time: datetime) -> GameSession:
        session = self.get_session(session_id)
        now = self.clock()
        session.adjust_start_time(start_time, now)
        session.calculate_cost(self.rate_table_for(session), now)
        self._persist_with_bill(session)
        logger.info("Session %s start corrected to %s", session_id, start_time.isoformat())
        return session

    def set_discount(self, session_id: str, discount: float) -> GameSession:
        session = self.get_session(session_id)
        now = self.clock()
        if session.is_active:
            session.calculate_cost(self.rate_table_for(session), now)
        session.set_discount(discount, now)
        if session.discount > session.total_cost:
            logger.warning(
                "Discount %.2f exceeds total cost %.2f on session %s",
                session.discount,
                session.total_cost,
                session_id,
            )
        self._persist_with_bill(session)
        return session

    def end_session(self, session_id: str) -> Tuple[GameSession, Optional[Bill]]:
        session = self.get_session(session_id)
        if not session.is_active:
            raise StateConflictError("Session is not active")
        session.end(self.rate_table_for(session), self.clock())
        bill = self._persist_with_bill(session)

        device = self._device_for(session)
        if device is not None:
            self._set_device_status(device, DeviceStatus.AVAILABLE)
        logger.info(
            "Ended session %s on %s: total=%.2f final=%.2f",
            session_id,
            session.device_number,
            session.total_cost,
            session.final_cost,
        )
        self.notifier.notify(
            VenueEventType.SESSION_ENDED,
            session.organization_id,
            {"sessionId": session.session_id, "finalCost": session.final_cost, "billId": session.bill_id},
        )
        return session, bill

    # Helpers --------------------------------------------------------------
    def _persist_with_bill(self, session: GameSession) -> Optional[Bill]:
        with self.repository.transaction():
            self.repository.update_session(session)
            return self.billing_service.recalculate_bill_by_id(session.bill_id)

    def _ensure_no_active_session(self, bill: Bill) -> None:
        for member_id in bill.session_ids:
            member = self.repository.get_session(member_id)
            if member is not None and member.is_active:
                raise StateConflictError(f"Bill {bill.bill_number} already has an active session")

    def _device_for(self, session: GameSession) -> Optional[Device]:
        if session.device_id:
            device = self.repository.get_device(session.device_id)
            if device is not None:
                return device
        return self.repository.find_device_by_number(session.device_number, session.organization_id)

    def _set_device_status(self, device: Device, status: DeviceStatus) -> None:
        if device.status == DeviceStatus.MAINTENANCE:
            return
        try:
            device.status = status
            self.repository.save_device(device)
        except Exception:
            logger.exception("Failed to mark device %s as %s", device.number, status.value)
