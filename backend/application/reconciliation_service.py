"""Repair pass for sessions listed on the wrong bill."""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

from app.config import AppConfig
from application.billing_service import BillingService
from application.events import Notifier, VenueEventType
from domain.bill import Bill
from domain.clock import Clock, utcnow
from domain.session import GameSession
from infrastructure.repository import VenueRepository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationReport:
    sessions_scanned: int = 0
    references_removed: int = 0
    references_added: int = 0
    bills_merged: int = 0
    bills_deleted: int = 0
    dangling_pointers: int = 0
    errors: int = 0

    @property
    def changed(self) -> bool:
        return bool(
            self.references_removed
            or self.references_added
            or self.bills_merged
            or self.bills_deleted
        )

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ReconciliationService:
    """
    ``GameSession.bill_id`` is authoritative; ``Bill.session_ids`` is repaired
    to match it.

    Pass 1 puts every session on the bill it points at. Pass 2 strips it from
    every other bill and disposes of bills that end up empty. Running pass 1
    first means an emptied bill never has a session pointing at it. Each bill
    repair runs in its own transaction; a failure is logged and counted and
    the sweep moves on.
    """

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

    def reconcile(self, organization_id: Optional[str] = None) -> ReconciliationReport:
        report = ReconciliationReport()
        sessions: List[GameSession] = []
        for session in self.repository.list_sessions(organization_id):
            if not session.bill_id:
                continue
            report.sessions_scanned += 1
            if self.repository.get_bill(session.bill_id) is None:
                report.dangling_pointers += 1
                logger.warning(
                    "Session %s points at missing bill %s; left untouched",
                    session.session_id,
                    session.bill_id,
                )
                continue
            sessions.append(session)

        for session in sessions:
            self._ensure_member(session, report)
        for session in sessions:
            self._strip_foreign(session, report)

        if report.changed or report.errors:
            logger.info("Reconciliation for %s: %s", organization_id or "all organizations", report.as_dict())
            self.notifier.notify(
                VenueEventType.BILLS_RECONCILED,
                organization_id or self.config.default_organization,
                report.as_dict(),
            )
        else:
            logger.debug("Reconciliation for %s found nothing to repair", organization_id or "all organizations")
        return report

    def _ensure_member(self, session: GameSession, report: ReconciliationReport) -> None:
        try:
            with self.repository.transaction():
                bill = self.repository.get_bill(session.bill_id)
                if bill is None or session.session_id in bill.session_ids:
                    return
                bill.add_session(session.session_id)
                self.billing_service.recalculate_bill(bill)
            report.references_added += 1
            logger.info("Re-added session %s to bill %s", session.session_id, bill.bill_number)
        except Exception:
            report.errors += 1
            logger.exception("Failed to re-add session %s to bill %s", session.session_id, session.bill_id)

    def _strip_foreign(self, session: GameSession, report: ReconciliationReport) -> None:
        for bill in self.repository.list_bills_containing_session(session.session_id):
            # Disposing an emptied bill may have repointed the session since the scan.
            current = self.repository.get_session(session.session_id) or session
            if bill.bill_id == current.bill_id:
                continue
            try:
                outcome = self._remove_reference(bill, session.session_id)
            except Exception:
                report.errors += 1
                logger.exception(
                    "Failed to remove session %s from bill %s", session.session_id, bill.bill_number
                )
                continue
            if outcome == "absent":
                continue
            report.references_removed += 1
            if outcome == "merged":
                report.bills_merged += 1
            elif outcome == "deleted":
                report.bills_deleted += 1

    def _remove_reference(self, bill: Bill, session_id: str) -> Optional[str]:
        with self.repository.transaction():
            # Re-read inside the transaction; an earlier repair may have merged into it.
            current = self.repository.get_bill(bill.bill_id)
            if current is None or session_id not in current.session_ids:
                return "absent"
            current.remove_session(session_id)
            self.billing_service.recalculate_bill(current)
            logger.info("Removed session %s from bill %s", session_id, current.bill_number)
            if not current.is_empty:
                return None
            outcome, _ = self.billing_service.dispose_empty_bill(current)
            return outcome
