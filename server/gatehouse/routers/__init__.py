"""FastAPI routers package."""

from .attendance import router as attendance_router
from .bookings import router as bookings_router
from .gate import router as gate_router
from .guests import router as guests_router
from .metrics import router as metrics_router

__all__ = [
    "attendance_router",
    "bookings_router",
    "gate_router",
    "guests_router",
    "metrics_router",
]
