from .payments import router as payments_router
from .credits import router as credits_router
from .refunds import router as refunds_router
from .bookings import router as bookings_router

__all__ = [
    "payments_router",
    "credits_router",
    "refunds_router",
    "bookings_router"
]
