"""camelCase payloads shared by the HTTP routers and the Socket.IO push."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from domain.bill import Bill
from domain.device import Device
from domain.order import Order
from domain.session import GameSession
from domain.table import VenueTable


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_device(device: Device) -> Dict[str, Any]:
    return {
        "deviceId": device.device_id,
        "name": device.name,
        "number": device.number,
        "type": device.device_type.value,
        "status": device.status.value,
        "controllers": device.controllers,
        "hourlyRate": device.hourly_rate,
        "playstationRates": (
            {str(k): v for k, v in device.playstation_rates.items()}
            if device.playstation_rates
            else None
        ),
        "organizationId": device.organization_id,
        "createdAt": _iso(device.created_at),
    }


def serialize_table(table: VenueTable) -> Dict[str, Any]:
    return {
        "tableId": table.table_id,
        "number": table.number,
        "name": table.display_name,
        "organizationId": table.organization_id,
    }


def serialize_session(session: GameSession) -> Dict[str, Any]:
    return {
        "sessionId": session.session_id,
        "deviceId": session.device_id,
        "deviceNumber": session.device_number,
        "deviceName": session.device_name,
        "deviceType": session.device_type.value,
        "customerName": session.customer_name,
        "startTime": _iso(session.start_time),
        "endTime": _iso(session.end_time),
        "status": session.status.value,
        "controllers": session.controllers,
        "controllersHistory": [
            {
                "controllers": period.controllers,
                "from": _iso(period.started_at),
                "to": _iso(period.ended_at),
            }
            for period in session.controllers_history
        ],
        "totalCost": session.total_cost,
        "discount": session.discount,
        "finalCost": session.final_cost,
        "notes": session.notes,
        "billId": session.bill_id,
        "organizationId": session.organization_id,
        "updatedAt": _iso(session.updated_at),
    }


def serialize_order(order: Order) -> Dict[str, Any]:
    return {
        "orderId": order.order_id,
        "amount": order.amount,
        "description": order.description,
        "status": order.status.value,
        "billId": order.bill_id,
    }


def serialize_bill(bill: Bill, orders: Iterable[Order] = ()) -> Dict[str, Any]:
    data = {
        "billId": bill.bill_id,
        "billNumber": bill.bill_number,
        "customerName": bill.customer_name,
        "tableId": bill.table_id,
        "billType": bill.bill_type.value,
        "status": bill.status.value,
        "subtotal": bill.subtotal,
        "discount": bill.discount,
        "discountPercentage": bill.discount_percentage,
        "tax": bill.tax,
        "total": bill.total,
        "paid": bill.paid,
        "remaining": bill.remaining,
        "sessionIds": list(bill.session_ids),
        "orderIds": list(bill.order_ids),
        "payments": [
            {
                "amount": payment.amount,
                "method": payment.method,
                "reference": payment.reference,
                "timestamp": _iso(payment.timestamp),
            }
            for payment in bill.payments
        ],
        "notes": bill.notes,
        "dueDate": _iso(bill.due_date),
        "organizationId": bill.organization_id,
        "createdAt": _iso(bill.created_at),
        "updatedAt": _iso(bill.updated_at),
    }
    orders = list(orders)
    if orders:
        data["orders"] = [serialize_order(order) for order in orders]
    return data
