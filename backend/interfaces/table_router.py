from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from application.serializers import serialize_table
from interfaces import deps
from interfaces.responses import ok

router = APIRouter(prefix="/tables", tags=["tables"])


class CreateTableRequest(BaseModel):
    number: str
    name: str = ""
    organizationId: Optional[str] = None


@router.get("")
def list_tables(organizationId: Optional[str] = None) -> Dict[str, Any]:
    tables = deps.table_service.list_tables(organizationId)
    return ok([serialize_table(table) for table in tables])


@router.post("", status_code=201)
def create_table(payload: CreateTableRequest) -> Dict[str, Any]:
    table = deps.table_service.create_table(payload.number, payload.name, payload.organizationId)
    return ok(serialize_table(table), "Table created")
