"""
Doxologos Payments - Booking Schemas
"""
from pydantic import BaseModel
from typing import Optional


class CancelBookingRequest(BaseModel):
    booking_id: Optional[str] = None
    reason: Optional[str] = None
