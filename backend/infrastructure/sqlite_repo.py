"""SQLite-backed repository implementation."""
from __future__ import annotations

import json
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional

from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from domain.bill import OPEN_STATUSES, Bill, BillStatus, BillType, Payment
from domain.device import Device, DeviceStatus, DeviceType
from domain.order import Order, OrderStatus
from domain.session import ControllerPeriod, GameSession, SessionStatus
from domain.table import VenueTable
from .repository import VenueRepository
from .database import SessionLocal, init_db
from .models import (
    BillModel,
    DeviceModel,
    GameSessionModel,
    OrderModel,
    VenueTableModel,
)


class SQLiteVenueRepository(VenueRepository):
    def __init__(self, engine: Optional[Engine] = None):
        self._engine = engine
        self._local = threading.local()
        init_db(engine)

    # Transactions ---------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["SQLiteVenueRepository"]:
        if getattr(self._local, "session", None) is not None:
            yield self
            return

        with SessionLocal(self._engine) as session:
            self._local.session = session
            try:
                with session.begin():
                    yield self
            finally:
                self._local.session = None

    @contextmanager
    def _scope(self) -> Iterator[Session]:
        active = getattr(self._local, "session", None)
        if active is not None:
            yield active
            return
        with SessionLocal(self._engine) as session, session.begin():
            yield session

    # Devices --------------------------------------------------------------
    def get_device(self, device_id: str) -> Optional[Device]:
        with self._scope() as session:
            model = session.get(DeviceModel, device_id)
            return self._device_from_model(model) if model else None

    def find_device_by_number(
        self, number: str, organization_id: Optional[str] = None
    ) -> Optional[Device]:
        with self._scope() as session:
            statement = select(DeviceModel).where(DeviceModel.number == number)
            if organization_id:
                statement = statement.where(DeviceModel.organization_id == organization_id)
            model = session.exec(statement).first()
            return self._device_from_model(model) if model else None

    def list_devices(self, organization_id: Optional[str] = None) -> Iterable[Device]:
        with self._scope() as session:
            statement = select(DeviceModel).order_by(DeviceModel.number)
            if organization_id:
                statement = statement.where(DeviceModel.organization_id == organization_id)
            return [self._device_from_model(model) for model in session.exec(statement).all()]

    def save_device(self, device: Device) -> None:
        with self._scope() as session:
            model = session.get(DeviceModel, device.device_id)
            if not model:
                model = DeviceModel(
                    device_id=device.device_id,
                    name=device.name,
                    number=device.number,
                    created_at=device.created_at,
                )
            model.organization_id = device.organization_id
            model.name = device.name
            model.number = device.number
            model.device_type = device.device_type.value
            model.status = device.status.value
            model.controllers = device.controllers
            model.hourly_rate = device.hourly_rate
            model.playstation_rates_json = (
                json.dumps({str(k): v for k, v in device.playstation_rates.items()})
                if device.playstation_rates
                else None
            )
            session.add(model)

    # Tables ---------------------------------------------------------------
    def get_table(self, table_id: str) -> Optional[VenueTable]:
        with self._scope() as session:
            model = session.get(VenueTableModel, table_id)
            return self._table_from_model(model) if model else None

    def list_tables(self, organization_id: Optional[str] = None) -> Iterable[VenueTable]:
        with self._scope() as session:
            statement = select(VenueTableModel).order_by(VenueTableModel.number)
            if organization_id:
                statement = statement.where(VenueTableModel.organization_id == organization_id)
            return [self._table_from_model(model) for model in session.exec(statement).all()]

    def save_table(self, table: VenueTable) -> None:
        with self._scope() as session:
            session.merge(
                VenueTableModel(
                    table_id=table.table_id,
                    organization_id=table.organization_id,
                    number=table.number,
                    name=table.name,
                    created_at=table.created_at,
                )
            )

    # Sessions -------------------------------------------------------------
    def get_session(self, session_id: str) -> Optional[GameSession]:
        with self._scope() as session:
            model = session.get(GameSessionModel, session_id)
            return self._session_from_model(model) if model else None

    def find_active_session_by_device(self, device_number: str) -> Optional[GameSession]:
        with self._scope() as session:
            statement = (
                select(GameSessionModel)
                .where(GameSessionModel.device_number == device_number)
                .where(GameSessionModel.status == SessionStatus.ACTIVE.value)
            )
            model = session.exec(statement).first()
            return self._session_from_model(model) if model else None

    def list_sessions(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> Iterable[GameSession]:
        with self._scope() as session:
            statement = select(GameSessionModel).order_by(GameSessionModel.start_time.desc())
            if organization_id:
                statement = statement.where(GameSessionModel.organization_id == organization_id)
            if status:
                statement = statement.where(GameSessionModel.status == status)
            if device_type:
                statement = statement.where(GameSessionModel.device_type == device_type)
            return [self._session_from_model(model) for model in session.exec(statement).all()]

    def add_session(self, session_obj: GameSession) -> None:
        with self._scope() as session:
            model = GameSessionModel(
                session_id=session_obj.session_id,
                device_number=session_obj.device_number,
                device_name=session_obj.device_name,
                device_type=session_obj.device_type.value,
                start_time=session_obj.start_time,
                created_at=session_obj.created_at,
                updated_at=session_obj.updated_at,
            )
            self._populate_session_model(model, session_obj)
            session.add(model)

    def update_session(self, session_obj: GameSession) -> None:
        with self._scope() as session:
            model = session.get(GameSessionModel, session_obj.session_id)
            if not model:
                self.add_session(session_obj)
                return
            self._populate_session_model(model, session_obj)
            session.add(model)

    # Bills ----------------------------------------------------------------
    def get_bill(self, bill_id: str) -> Optional[Bill]:
        with self._scope() as session:
            model = session.get(BillModel, bill_id)
            return self._bill_from_model(model) if model else None

    def list_bills(
        self,
        organization_id: Optional[str] = None,
        status: Optional[str] = None,
        table_id: Optional[str] = None,
    ) -> Iterable[Bill]:
        with self._scope() as session:
            statement = select(BillModel).order_by(BillModel.created_at.desc())
            if organization_id:
                statement = statement.where(BillModel.organization_id == organization_id)
            if status:
                statement = statement.where(BillModel.status == status)
            if table_id:
                statement = statement.where(BillModel.table_id == table_id)
            return [self._bill_from_model(model) for model in session.exec(statement).all()]

    def list_bills_containing_session(self, session_id: str) -> List[Bill]:
        with self._scope() as session:
            statement = select(BillModel).where(
                BillModel.session_ids_json.contains(json.dumps(session_id))
            )
            bills = [self._bill_from_model(model) for model in session.exec(statement).all()]
        return [bill for bill in bills if session_id in bill.session_ids]

    def list_open_bills(self, organization_id: Optional[str] = None) -> List[Bill]:
        with self._scope() as session:
            statement = (
                select(BillModel)
                .where(BillModel.status.in_([status.value for status in OPEN_STATUSES]))
                .order_by(BillModel.created_at.desc())
            )
            if organization_id:
                statement = statement.where(BillModel.organization_id == organization_id)
            return [self._bill_from_model(model) for model in session.exec(statement).all()]

    def list_bill_numbers(self) -> Iterable[str]:
        with self._scope() as session:
            return list(session.exec(select(BillModel.bill_number)).all())

    def add_bill(self, bill: Bill) -> None:
        with self._scope() as session:
            model = BillModel(
                bill_id=bill.bill_id,
                bill_number=bill.bill_number,
                created_at=bill.created_at,
                updated_at=bill.updated_at,
            )
            self._populate_bill_model(model, bill)
            session.add(model)

    def update_bill(self, bill: Bill) -> None:
        with self._scope() as session:
            model = session.get(BillModel, bill.bill_id)
            if not model:
                self.add_bill(bill)
                return
            self._populate_bill_model(model, bill)
            session.add(model)

    def delete_bill(self, bill_id: str) -> None:
        with self._scope() as session:
            model = session.get(BillModel, bill_id)
            if model:
                session.delete(model)

    # Orders ---------------------------------------------------------------
    def get_order(self, order_id: str) -> Optional[Order]:
        with self._scope() as session:
            model = session.get(OrderModel, order_id)
            return self._order_from_model(model) if model else None

    def list_orders(self, order_ids: Iterable[str]) -> List[Order]:
        order_ids = list(order_ids)
        if not order_ids:
            return []
        with self._scope() as session:
            statement = select(OrderModel).where(OrderModel.order_id.in_(order_ids))
            return [self._order_from_model(model) for model in session.exec(statement).all()]

    def save_order(self, order: Order) -> None:
        with self._scope() as session:
            session.merge(
                OrderModel(
                    order_id=order.order_id,
                    organization_id=order.organization_id,
                    amount=order.amount,
                    description=order.description,
                    status=order.status.value,
                    bill_id=order.bill_id,
                    created_at=order.created_at,
                )
            )

    # Helpers --------------------------------------------------------------
    def _device_from_model(self, model: DeviceModel) -> Device:
        rates = None
        if model.playstation_rates_json:
            rates = {int(k): float(v) for k, v in json.loads(model.playstation_rates_json).items()}
        return Device(
            device_id=model.device_id,
            name=model.name,
            number=model.number,
            device_type=DeviceType(model.device_type),
            status=DeviceStatus(model.status),
            controllers=model.controllers,
            hourly_rate=model.hourly_rate,
            playstation_rates=rates,
            organization_id=model.organization_id,
            created_at=model.created_at,
        )

    def _table_from_model(self, model: VenueTableModel) -> VenueTable:
        return VenueTable(
            table_id=model.table_id,
            number=model.number,
            name=model.name,
            organization_id=model.organization_id,
            created_at=model.created_at,
        )

    def _populate_session_model(self, model: GameSessionModel, session_obj: GameSession) -> None:
        model.organization_id = session_obj.organization_id
        model.device_id = session_obj.device_id
        model.device_number = session_obj.device_number
        model.device_name = session_obj.device_name
        model.device_type = session_obj.device_type.value
        model.customer_name = session_obj.customer_name
        model.start_time = session_obj.start_time
        model.end_time = session_obj.end_time
        model.status = session_obj.status.value
        model.controllers = session_obj.controllers
        model.controllers_history_json = json.dumps(
            [_period_to_dict(period) for period in session_obj.controllers_history]
        )
        model.total_cost = session_obj.total_cost
        model.discount = session_obj.discount
        model.final_cost = session_obj.final_cost
        model.notes = session_obj.notes
        model.bill_id = session_obj.bill_id
        model.updated_at = session_obj.updated_at

    def _session_from_model(self, model: GameSessionModel) -> GameSession:
        return GameSession(
            session_id=model.session_id,
            organization_id=model.organization_id,
            device_id=model.device_id,
            device_number=model.device_number,
            device_name=model.device_name,
            device_type=DeviceType(model.device_type),
            customer_name=model.customer_name,
            start_time=model.start_time,
            end_time=model.end_time,
            status=SessionStatus(model.status),
            controllers=model.controllers,
            controllers_history=[
                _period_from_dict(raw) for raw in json.loads(model.controllers_history_json or "[]")
            ],
            total_cost=model.total_cost,
            discount=model.discount,
            final_cost=model.final_cost,
            notes=model.notes,
            bill_id=model.bill_id,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _populate_bill_model(self, model: BillModel, bill: Bill) -> None:
        model.bill_number = bill.bill_number
        model.organization_id = bill.organization_id
        model.customer_name = bill.customer_name
        model.table_id = bill.table_id
        model.bill_type = bill.bill_type.value
        model.status = bill.status.value
        model.subtotal = bill.subtotal
        model.discount = bill.discount
        model.discount_percentage = bill.discount_percentage
        model.tax = bill.tax
        model.total = bill.total
        model.paid = bill.paid
        model.remaining = bill.remaining
        model.session_ids_json = json.dumps(bill.session_ids)
        model.order_ids_json = json.dumps(bill.order_ids)
        model.payments_json = json.dumps(
            [
                {
                    "amount": payment.amount,
                    "method": payment.method,
                    "reference": payment.reference,
                    "timestamp": payment.timestamp.isoformat(),
                }
                for payment in bill.payments
            ]
        )
        model.notes = bill.notes
        model.due_date = bill.due_date
        model.updated_at = bill.updated_at

    def _bill_from_model(self, model: BillModel) -> Bill:
        return Bill(
            bill_id=model.bill_id,
            bill_number=model.bill_number,
            customer_name=model.customer_name,
            organization_id=model.organization_id,
            table_id=model.table_id,
            bill_type=BillType(model.bill_type),
            status=BillStatus(model.status),
            subtotal=model.subtotal,
            discount=model.discount,
            discount_percentage=model.discount_percentage,
            tax=model.tax,
            total=model.total,
            paid=model.paid,
            remaining=model.remaining,
            session_ids=json.loads(model.session_ids_json or "[]"),
            order_ids=json.loads(model.order_ids_json or "[]"),
            payments=[
                Payment(
                    amount=raw["amount"],
                    method=raw.get("method", "cash"),
                    reference=raw.get("reference"),
                    timestamp=datetime.fromisoformat(raw["timestamp"]),
                )
                for raw in json.loads(model.payments_json or "[]")
            ],
            notes=model.notes,
            due_date=model.due_date,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    def _order_from_model(self, model: OrderModel) -> Order:
        return Order(
            order_id=model.order_id,
            amount=model.amount,
            description=model.description,
            status=OrderStatus(model.status),
            bill_id=model.bill_id,
            organization_id=model.organization_id,
            created_at=model.created_at,
        )


def _period_to_dict(period: ControllerPeriod) -> Dict[str, Any]:
    return {
        "controllers": period.controllers,
        "from": period.started_at.isoformat(),
        "to": period.ended_at.isoformat() if period.ended_at else None,
    }


def _period_from_dict(raw: Dict[str, Any]) -> ControllerPeriod:
    return ControllerPeriod(
        controllers=int(raw["controllers"]),
        started_at=datetime.fromisoformat(raw["from"]),
        ended_at=datetime.fromisoformat(raw["to"]) if raw.get("to") else None,
    )
