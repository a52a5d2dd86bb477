from .admin_router import router as admin_router
from .bill_router import router as bill_router
from .device_router import router as device_router
from .session_router import router as session_router
from .table_router import router as table_router

__all__ = [
    "admin_router",
    "bill_router",
    "device_router",
    "session_router",
    "table_router",
]
