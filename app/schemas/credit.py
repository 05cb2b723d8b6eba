"""
Doxologos Payments - Credit Schemas
"""
from pydantic import BaseModel
from typing import Optional


class CreditListRequest(BaseModel):
    status: Optional[str] = None
    # Apenas equipe pode consultar créditos de outro usuário
    user_id: Optional[str] = None


class CreditCreateRequest(BaseModel):
    user_id: str
    amount: float
    source_type: str = "manual"
    source_reason: Optional[str] = None
    currency: str = "BRL"
    original_booking_id: Optional[str] = None
    original_payment_id: Optional[str] = None
    metadata: Optional[dict] = None


class CreditReserveRequest(BaseModel):
    credit_id: Optional[str] = None
    reservation_token: Optional[str] = None


class CreditConsumeRequest(BaseModel):
    credit_id: Optional[str] = None
    reservation_token: Optional[str] = None
    used_booking_id: Optional[str] = None
    used_payment_id: Optional[str] = None


class CreditApplyRequest(BaseModel):
    booking_id: Optional[str] = None
    credit_id: Optional[str] = None
