"""Response envelope used by every router."""
from __future__ import annotations

from typing import Any, Dict

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domain.errors import BillingError, NotFoundError, StateConflictError, ValidationError

STATUS_BY_ERROR = {
    ValidationError: 400,
    NotFoundError: 404,
    StateConflictError: 409,
}


def ok(data: Any = None, message: str = "ok") -> Dict[str, Any]:
    return {"success": True, "message": message, "data": data}


def error_body(message: str, reason: str) -> Dict[str, Any]:
    return {"success": False, "message": message, "error": reason}


async def billing_error_handler(request: Request, exc: BillingError) -> JSONResponse:
    status_code = 400
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            status_code = code
            break
    return JSONResponse(status_code=status_code, content=error_body(str(exc), exc.reason))


def _describe(error: Dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
    message = error.get("msg", "invalid value")
    return f"{location}: {message}" if location else message


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed or missing request fields use the same envelope as domain errors."""
    message = "; ".join(_describe(error) for error in exc.errors()) or "Invalid request"
    return JSONResponse(status_code=400, content=error_body(message, ValidationError.reason))
