from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from application.serializers import serialize_bill, serialize_order
from interfaces import deps
from interfaces.responses import ok

router = APIRouter(prefix="/bills", tags=["bills"])


class PaymentRequest(BaseModel):
    amount: float
    method: str = "cash"
    reference: Optional[str] = None


class OrderRequest(BaseModel):
    amount: float
    description: str = Field(default="", description="Free-text line item label")


def _bill_payload(bill) -> Dict[str, Any]:
    return serialize_bill(bill, deps.billing_service.list_bill_orders(bill))


@router.get("")
def list_bills(
    organizationId: Optional[str] = None,
    status: Optional[str] = None,
    tableId: Optional[str] = None,
) -> Dict[str, Any]:
    bills = deps.billing_service.list_bills(organizationId, status, tableId)
    return ok([serialize_bill(bill) for bill in bills])


@router.get("/{bill_id}")
def get_bill(bill_id: str) -> Dict[str, Any]:
    return ok(_bill_payload(deps.billing_service.get_bill(bill_id)))


@router.post("/{bill_id}/payments")
def add_payment(bill_id: str, payload: PaymentRequest) -> Dict[str, Any]:
    bill = deps.billing_service.add_payment(
        bill_id, payload.amount, method=payload.method, reference=payload.reference
    )
    return ok(_bill_payload(bill), "Payment recorded")


@router.post("/{bill_id}/orders", status_code=201)
def add_order(bill_id: str, payload: OrderRequest) -> Dict[str, Any]:
    bill, order = deps.billing_service.add_order(bill_id, payload.amount, payload.description)
    return ok({"bill": _bill_payload(bill), "order": serialize_order(order)}, "Order added")


@router.delete("/{bill_id}/orders/{order_id}")
def cancel_order(bill_id: str, order_id: str) -> Dict[str, Any]:
    bill = deps.billing_service.cancel_order(bill_id, order_id)
    return ok(_bill_payload(bill), "Order cancelled")
