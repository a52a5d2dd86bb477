"""Administrative endpoints: reconciliation trigger and configuration."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel

from interfaces import deps
from interfaces.responses import ok

router = APIRouter(tags=["admin"])


class ReconcileRequest(BaseModel):
    organizationId: Optional[str] = None


def _settings_payload() -> Dict[str, Any]:
    settings = deps.settings
    return {
        "version": settings.version,
        "organization": settings.default_organization,
        "billing": settings.billing,
        "reconciliation": settings.reconciliation,
        "notifications": settings.notifications,
        "storage": settings.database_backend,
    }


@router.post("/admin/reconcile")
def reconcile(payload: Optional[ReconcileRequest] = None) -> Dict[str, Any]:
    organization_id = payload.organizationId if payload else None
    report = deps.reconciliation_service.reconcile(organization_id)
    message = "Bills reconciled" if report.changed else "Nothing to reconcile"
    return ok(report.as_dict(), message)


@router.get("/settings")
def get_settings() -> Dict[str, Any]:
    return ok(_settings_payload())


@router.post("/settings/reload")
def reload_settings() -> Dict[str, Any]:
    deps.reload_settings_from_disk()
    return ok(_settings_payload(), "Settings reloaded")
