"""FastAPI entry point for the PlayStation venue session & billing backend."""
import asyncio
import contextlib
import logging

import socketio
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from app.config import get_settings
from app.logging_config import configure_logging

configure_logging(get_settings())

from domain.errors import BillingError  # noqa: E402
from infrastructure.socketio_manager import register_event_handlers, set_repository, sio  # noqa: E402
from interfaces import (  # noqa: E402
    admin_router,
    bill_router,
    deps,
    device_router,
    session_router,
    table_router,
)
from interfaces.responses import billing_error_handler, request_validation_handler  # noqa: E402

logger = logging.getLogger(__name__)

set_repository(deps.repository)
register_event_handlers(deps.event_bus)

app = FastAPI(title="PlayStation Venue Billing System")

app.include_router(device_router)
app.include_router(table_router)
app.include_router(session_router)
app.include_router(bill_router)
app.include_router(admin_router)

app.add_exception_handler(BillingError, billing_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=deps.settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Socket.IO mounted beside FastAPI as one ASGI app.
socket_app = socketio.ASGIApp(sio, other_asgi_app=app)


@app.get("/health", tags=["health"])
def health_check() -> dict:
    """Expose a minimal health endpoint to help dev tooling."""
    return {"status": "ok", "configVersion": deps.settings.version}


# Background tasks ----------------------------------------------
@app.on_event("startup")
async def _start_background_tasks() -> None:  # pragma: no cover - runtime wiring
    await deps.event_bus.start()

    interval = float(deps.settings.reconciliation.get("interval_seconds", 0) or 0)
    if interval <= 0:
        return

    async def _reconcile_loop():
        while True:
            await asyncio.sleep(interval)
            try:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, deps.reconciliation_service.reconcile)
            except Exception:
                logger.exception("Periodic reconciliation failed")

    app.state._reconcile_task = asyncio.create_task(_reconcile_loop())
    logger.info("Periodic reconciliation every %.0fs", interval)


@app.on_event("shutdown")
async def _stop_background_tasks() -> None:  # pragma: no cover - runtime wiring
    reconcile_task = getattr(app.state, "_reconcile_task", None)
    if reconcile_task:
        reconcile_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await reconcile_task
    await deps.event_bus.stop()
