"""
Doxologos Payments - Manual Refund Schemas
"""
from pydantic import BaseModel, Field
from typing import Optional, List


class RefundNotification(BaseModel):
    recipient_email: Optional[str] = None
    cc_emails: Optional[List[str]] = None
    subject: Optional[str] = None
    message: Optional[str] = None


class ManualRefundRequest(BaseModel):
    payment_id: Optional[str] = None
    reason: Optional[str] = None
    proof_base64: Optional[str] = None
    proof_filename: Optional[str] = None
    proof_checksum: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    notification: Optional[RefundNotification] = None


class RefundOverviewRequest(BaseModel):
    payment_id: Optional[str] = None


class RefundNotifyRequest(BaseModel):
    limit: Optional[int] = Field(default=10)
    dry_run: bool = False
    notification_id: Optional[str] = None
