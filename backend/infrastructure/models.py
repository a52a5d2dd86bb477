"""SQLModel ORM tables mirroring the domain entities."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import SQLModel, Field


class DeviceModel(SQLModel, table=True):
    device_id: str = Field(primary_key=True)
    organization_id: str = Field(default="default", index=True)
    name: str
    number: str = Field(index=True)
    device_type: str = Field(default="playstation")
    status: str = Field(default="available")
    controllers: int = Field(default=2)
    hourly_rate: Optional[float] = None
    playstation_rates_json: Optional[str] = None  # {"1": 20, "2": 20, "3": 25, "4": 30}
    created_at: datetime


class VenueTableModel(SQLModel, table=True):
    table_id: str = Field(primary_key=True)
    organization_id: str = Field(default="default", index=True)
    number: str
    name: str = ""
    created_at: datetime


class GameSessionModel(SQLModel, table=True):
    session_id: str = Field(primary_key=True)
    organization_id: str = Field(default="default", index=True)
    device_id: Optional[str] = None
    device_number: str = Field(index=True)
    device_name: str
    device_type: str
    customer_name: str = ""
    start_time: datetime = Field(index=True)
    end_time: Optional[datetime] = None
    status: str = Field(default="active", index=True)
    controllers: int = 1
    controllers_history_json: str = "[]"  # [{"controllers": 2, "from": iso, "to": iso|null}]
    total_cost: float = 0.0
    discount: float = 0.0
    final_cost: float = 0.0
    notes: str = ""
    bill_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime
    updated_at: datetime


class BillModel(SQLModel, table=True):
    bill_id: str = Field(primary_key=True)
    bill_number: str = Field(index=True, unique=True)
    organization_id: str = Field(default="default", index=True)
    customer_name: str = ""
    table_id: Optional[str] = Field(default=None, index=True)
    bill_type: str = Field(default="cafe")
    status: str = Field(default="draft", index=True)
    subtotal: float = 0.0
    discount: float = 0.0
    discount_percentage: float = 0.0
    tax: float = 0.0
    total: float = 0.0
    paid: float = 0.0
    remaining: float = 0.0
    session_ids_json: str = "[]"
    order_ids_json: str = "[]"
    payments_json: str = "[]"
    notes: str = ""
    due_date: Optional[datetime] = None
    created_at: datetime = Field(index=True)
    updated_at: datetime


class OrderModel(SQLModel, table=True):
    order_id: str = Field(primary_key=True)
    organization_id: str = Field(default="default", index=True)
    amount: float
    description: str = ""
    status: str = Field(default="pending")
    bill_id: Optional[str] = Field(default=None, index=True)
    created_at: datetime
