"""Table registry plus the table link / unlink / move workflows."""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple, TYPE_CHECKING
from uuid import uuid4

from app.config import AppConfig
from application.billing_service import BillingService
from application.events import Notifier, VenueEventType
from application.session_service import default_customer_name
from domain.bill import Bill, BillType
from domain.clock import Clock, utcnow
from domain.errors import NotFoundError, StateConflictError, ValidationError
from domain.session import GameSession
from domain.table import VenueTable
from infrastructure.repository import VenueRepository

if TYPE_CHECKING:
    from application.reconciliation_service import ReconciliationService

logger = logging.getLogger(__name__)


class TableService:
    def __init__(
        self,
        config: AppConfig,
        repository: VenueRepository,
        billing_service: BillingService,
        notifier: Optional[Notifier] = None,
        reconciliation_service: Optional["ReconciliationService"] = None,
        clock: Clock = utcnow,
    ):
        self.config = config
        self.repository = repository
        self.billing_service = billing_service
        self.notifier = notifier or Notifier(None, enabled=False)
        self.reconciliation_service = reconciliation_service
        self.clock = clock

    def update_config(self, config: AppConfig) -> None:
        self.config = config

    # Registry -------------------------------------------------------------
    def create_table(
        self, number: str, name: str = "", organization_id: Optional[str] = None
    ) -> VenueTable:
        number = str(number or "").strip()
        if not number:
            raise ValidationError("Table number is required")
        organization_id = organization_id or self.config.default_organization
        for table in self.repository.list_tables(organization_id):
            if table.number == number:
                raise StateConflictError(f"Table {number} already exists")
        table = VenueTable(
            table_id=str(uuid4()),
            number=number,
            name=name or "",
            organization_id=organization_id,
            created_at=self.clock(),
        )
        self.repository.save_table(table)
        return table

    def list_tables(self, organization_id: Optional[str] = None) -> List[VenueTable]:
        return sorted(self.repository.list_tables(organization_id), key=lambda t: t.number)

    def get_table(self, table_id: str) -> VenueTable:
        table = self.repository.get_table(table_id)
        if table is None:
            raise NotFoundError(f"Table {table_id} not found")
        return table

    # Workflows ------------------------------------------------------------
    def link_session_to_table(self, session_id: str, table_id: str) -> Tuple[GameSession, Bill]:
        """Move a session onto the table's open bill, or tag its own bill with the table."""
        session = self._get_session(session_id)
        table = self.get_table(table_id)
        source = self.repository.get_bill(session.bill_id) if session.bill_id else None
        if source is not None and source.table_id == table.table_id:
            return session, source
        if source is not None:
            source.ensure_open()

        with self.repository.transaction():
            exclude = [source.bill_id] if source is not None else []
            target = self.billing_service.find_open_bill_for_table(
                session.organization_id, table.table_id, exclude=exclude
            )
            if target is not None:
                target = self._move(session, source, target)
            elif source is not None and len(source.session_ids) <= 1:
                source.table_id = table.table_id
                source.notes = _append_note(source.notes, f"Linked to {table.display_name}")
                target = self.billing_service.recalculate_bill(source)
            else:
                target = self.billing_service.create_bill(
                    organization_id=session.organization_id,
                    customer_name=default_customer_name(session.device_name),
                    table_id=table.table_id,
                    bill_type=BillType(session.device_type.value),
                    notes=f"Linked to {table.display_name}",
                )
                target = self._move(session, source, target)

        logger.info("Linked session %s to %s (bill %s)", session_id, table.display_name, target.bill_number)
        self.notifier.notify(
            VenueEventType.TABLE_LINKED,
            session.organization_id,
            {"sessionId": session_id, "tableId": table.table_id, "billId": target.bill_id},
        )
        self._reconcile_after(session.organization_id)
        return self._get_session(session_id), target

    def unlink_session_from_table(self, session_id: str) -> Tuple[GameSession, Bill]:
        """Give the session a table-less bill of its own."""
        session = self._get_session(session_id)
        source = self.repository.get_bill(session.bill_id) if session.bill_id else None
        if source is None or not source.table_id:
            raise StateConflictError("Session is not linked to a table")
        source.ensure_open()
        table_id = source.table_id

        with self.repository.transaction():
            if source.session_ids == [session.session_id]:
                source.table_id = None
                source.notes = _append_note(source.notes, "Unlinked from table")
                target = self.billing_service.recalculate_bill(source)
            else:
                target = self.billing_service.create_bill(
                    organization_id=session.organization_id,
                    customer_name=default_customer_name(session.device_name),
                    bill_type=BillType(session.device_type.value),
                    notes=f"Split from {source.bill_number}",
                )
                target = self._move(session, source, target)

        logger.info("Unlinked session %s from table %s", session_id, table_id)
        self.notifier.notify(
            VenueEventType.TABLE_UNLINKED,
            session.organization_id,
            {"sessionId": session_id, "tableId": table_id, "billId": target.bill_id},
        )
        self._reconcile_after(session.organization_id)
        return self._get_session(session_id), target

    def move_session_to_bill(self, session_id: str, target_bill_id: str) -> Tuple[GameSession, Bill]:
        session = self._get_session(session_id)
        target = self.billing_service.get_bill(target_bill_id)
        if session.bill_id == target.bill_id:
            return session, target
        target.ensure_open()
        if target.organization_id != session.organization_id:
            raise ValidationError("Cannot move a session to another organization's bill")
        source = self.repository.get_bill(session.bill_id) if session.bill_id else None
        if source is not None:
            source.ensure_open()

        with self.repository.transaction():
            target = self._move(session, source, target)

        logger.info(
            "Moved session %s from %s to %s",
            session_id,
            source.bill_number if source else "no bill",
            target.bill_number,
        )
        self._reconcile_after(session.organization_id)
        return self._get_session(session_id), target

    # Helpers --------------------------------------------------------------
    def _move(self, session: GameSession, source: Optional[Bill], target: Bill) -> Bill:
        """Detach from ``source``, attach to ``target``; dispose ``source`` if emptied."""
        target.ensure_open()
        if source is not None and source.bill_id != target.bill_id:
            self.billing_service.detach_session(source, session.session_id)
        target = self.billing_service.attach_session(target, session)
        if source is not None and source.bill_id != target.bill_id and source.is_empty:
            _, merged_into = self.billing_service.dispose_empty_bill(source, preferred=target)
            if merged_into is not None and merged_into.bill_id == target.bill_id:
                target = merged_into
        return target

    def _get_session(self, session_id: str) -> GameSession:
        session = self.repository.get_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    def _reconcile_after(self, organization_id: str) -> None:
        if self.reconciliation_service is None:
            return
        if not self.config.reconciliation.get("after_table_operations", True):
            return
        try:
            self.reconciliation_service.reconcile(organization_id)
        except Exception:
            logger.exception("Reconciliation after table operation failed")


def _append_note(notes: str, line: str) -> str:
    return f"{notes}\n{line}" if notes else line
