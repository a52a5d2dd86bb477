"""In-memory data store used by tests and the ``STORAGE=memory`` backend."""
from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional

from domain.bill import Bill
from domain.device import Device
from domain.order import Order
from domain.session import GameSession, SessionStatus
from domain.table import VenueTable
from .repository import VenueRepository


class InMemoryVenueRepository(VenueRepository):
    """Dict-backed store. Entities are copied on the way in and out so callers
    never mutate stored state without an explicit save."""

    def __init__(self):
        self._devices: Dict[str, Device] = {}
        self._tables: Dict[str, VenueTable] = {}
        self._sessions: Dict[str, GameSession] = {}
        self._bills: Dict[str, Bill] = {}
        self._orders: Dict[str, Order] = {}
        # Held for a whole outer transaction and for every write.
        self._lock = threading.RLock()
        self._local = threading.local()

    @contextmanager
    def transaction(self) -> Iterator["InMemoryVenueRepository"]:
        depth = getattr(self._local, "depth", 0)
        if depth:
            self._local.depth = depth + 1
            try:
                yield self
            finally:
                self._local.depth -= 1
            return

        with self._lock:
            snapshot = copy.deepcopy(
                (self._devices, self._tables, self._sessions, self._bills, self._orders)
            )
            self._local.depth = 1
            try:
                yield self
            except BaseException:
                (
                    self._devices,
                    self._tables,
                    self._sessions,
                    self._bills,
                    self._orders,
                ) = snapshot
                raise
            finally:
                self._local.depth = 0

    # Devices -------------------------------------------------------------
    def get_device(self, device_id: str) -> Optional[Device]:
        return copy.deepcopy(self._devices.get(device_id))

    def find_device_by_number(
        self, number: str, organization_id: Optional[str] = None
    ) -> Optional[Device]:
        for device in self._devices.values():
            if device.number != number:
                continue
            if organization_id and device.organization_id != organization_id:
                continue
            return copy.deepcopy(device)
        return None

    def list_devices(self, organization_id: Optional[str] = None) -> Iterable[Device]:
        return [
            copy.deepcopy(device)
            for device in self._devices.values()
            if not organization_id or device.organization_id == organization_id
        ]

    def save_device(self, device: Device) -> None:
        with self._lock:
            self._devices[device.device_id] = copy.deepcopy(device)

    # Tables --------------------------------------------------------------
    def get_table(self, table_id: str) -> Optional[VenueTable]:
        return copy.deepcopy(self._tables.get(table_id))

    def list_tables(self, organization_id: Optional[str] = None) -> Iterable[VenueTable]:
        return [
            copy.deepcopy(table)
            for table in self._tables.values()
            if not organization_id or table.organization_id == organization_id
        ]

    def save_table(self, table: VenueTable) -> None:
        with self._lock:
            self._tables[table.table_id] = copy.deepcopy(table)

    # Sessions ------------------------------------------------------------
    def get_session(self, session_id: str) -> Optional[GameSession]:
        return copy.deepcopy(self._sessions.get(session_id))

    def find_active_session_by_device(self, device_number: str) -> Optional[GameSession]:
        for session in self._sessions.values():
            if session.device_number == device_number and session.status == SessionStatus.ACTIVE:
                return copy.deepcopy(session)
        return None

    def list_sessions(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> Iterable[GameSession]:
        sessions = [
            copy.deepcopy(session)
            for session in self._sessions.values()
            if (not organization_id or session.organization_id == organization_id)
            and (not status or session.status.value == status)
            and (not device_type or session.device_type.value == device_type)
        ]
        sessions.sort(key=lambda s: s.start_time, reverse=True)
        return sessions

    def add_session(self, session: GameSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = copy.deepcopy(session)

    def update_session(self, session: GameSession) -> None:
        with self._lock:
            self._sessions[session.session_id] = copy.deepcopy(session)

    # Bills ---------------------------------------------------------------
    def get_bill(self, bill_id: str) -> Optional[Bill]:
        return copy.deepcopy(self._bills.get(bill_id))

    def list_bills(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        table_id: Optional[str] = None,
    ) -> Iterable[Bill]:
        bills = [
            copy.deepcopy(bill)
            for bill in self._bills.values()
            if (not organization_id or bill.organization_id == organization_id)
            and (not status or bill.status.value == status)
            and (not table_id or bill.table_id == table_id)
        ]
        bills.sort(key=lambda b: b.created_at, reverse=True)
        return bills

    def list_bills_containing_session(self, session_id: str) -> List[Bill]:
        return [
            copy.deepcopy(bill)
            for bill in self._bills.values()
            if session_id in bill.session_ids
        ]

    def list_open_bills(self, organization_id: Optional[str] = None) -> List[Bill]:
        bills = [
            copy.deepcopy(bill)
            for bill in self._bills.values()
            if bill.is_open and (not organization_id or bill.organization_id == organization_id)
        ]
        bills.sort(key=lambda b: b.created_at, reverse=True)
        return bills

    def list_bill_numbers(self) -> Iterable[str]:
        return [bill.bill_number for bill in self._bills.values()]

    def add_bill(self, bill: Bill) -> None:
        with self._lock:
            self._bills[bill.bill_id] = copy.deepcopy(bill)

    def update_bill(self, bill: Bill) -> None:
        with self._lock:
            self._bills[bill.bill_id] = copy.deepcopy(bill)

    def delete_bill(self, bill_id: str) -> None:
        with self._lock:
            self._bills.pop(bill_id, None)

    # Orders --------------------------------------------------------------
    def get_order(self, order_id: str) -> Optional[Order]:
        return copy.deepcopy(self._orders.get(order_id))

    def list_orders(self, order_ids: Iterable[str]) -> List[Order]:
        return [copy.deepcopy(self._orders[oid]) for oid in order_ids if oid in self._orders]

    def save_order(self, order: Order) -> None:
        with self._lock:
            self._orders[order.order_id] = copy.deepcopy(order)
