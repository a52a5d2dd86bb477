"""Abstract repository interfaces for persistence."""
from __future__ import annotations

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Optional

from domain.bill import Bill
from domain.device import Device
from domain.order import Order
from domain.session import GameSession
from domain.table import VenueTable


class VenueRepository(ABC):
    """Unified gateway so memory store / SQLite share the same API."""

    @contextmanager
    def transaction(self) -> Iterator["VenueRepository"]:
        """Group several writes so they commit or roll back together."""
        yield self

    # Devices -------------------------------------------------------------
    @abstractmethod
    def get_device(self, device_id: str) -> Optional[Device]:
        raise NotImplementedError

    @abstractmethod
    def find_device_by_number(
        self, number: str, organization_id: Optional[str] = None
    ) -> Optional[Device]:
        raise NotImplementedError

    @abstractmethod
    def list_devices(self, organization_id: Optional[str] = None) -> Iterable[Device]:
        raise NotImplementedError

    @abstractmethod
    def save_device(self, device: Device) -> None:
        raise NotImplementedError

    # Tables --------------------------------------------------------------
    @abstractmethod
    def get_table(self, table_id: str) -> Optional[VenueTable]:
        raise NotImplementedError

    @abstractmethod
    def list_tables(self, organization_id: Optional[str] = None) -> Iterable[VenueTable]:
        raise NotImplementedError

    @abstractmethod
    def save_table(self, table: VenueTable) -> None:
        raise NotImplementedError

    # Sessions ------------------------------------------------------------
    @abstractmethod
    def get_session(self, session_id: str) -> Optional[GameSession]:
        raise NotImplementedError

    @abstractmethod
    def find_active_session_by_device(self, device_number: str) -> Optional[GameSession]:
        raise NotImplementedError

    @abstractmethod
    def list_sessions(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> Iterable[GameSession]:
        raise NotImplementedError

    @abstractmethod
    def add_session(self, session: GameSession) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_session(self, session: GameSession) -> None:
        raise NotImplementedError

    # Bills ---------------------------------------------------------------
    @abstractmethod
    def get_bill(self, bill_id: str) -> Optional[Bill]:
        raise NotImplementedError

    @abstractmethod
    def list_bills(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        table_id: Optional[str] = None,
    ) -> Iterable[Bill]:
        raise NotImplementedError

    @abstractmethod
    def list_bills_containing_session(self, session_id: str) -> List[Bill]:
        raise NotImplementedError

    @abstractmethod
    def list_open_bills(self, organization_id: Optional[str] = None) -> List[Bill]:
        """Draft/partial/overdue bills, newest first."""
        raise NotImplementedError

    @abstractmethod
    def list_bill_numbers(self) -> Iterable[str]:
        raise NotImplementedError

    @abstractmethod
    def add_bill(self, bill: Bill) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_bill(self, bill: Bill) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_bill(self, bill_id: str) -> None:
        raise NotImplementedError

    # Orders --------------------------------------------------------------
    @abstractmethod
    def get_order(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError

    @abstractmethod
    def list_orders(self, order_ids: Iterable[str]) -> List[Order]:
        raise NotImplementedError

    @abstractmethod
    def save_order(self, order: Order) -> None:
        raise NotImplementedError
