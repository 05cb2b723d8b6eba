from .payment import (
    PayerInfo,
    CreatePreferenceRequest,
    CreatePreferenceResponse,
    CreatePaymentRequest,
    CreatePaymentResponse,
    CardPaymentRequest,
    CardPaymentResponse,
    CheckPaymentRequest,
    CheckPaymentResponse,
    RefundRequest,
    RefundResponse,
)
from .credit import (
    CreditListRequest,
    CreditCreateRequest,
    CreditReserveRequest,
    CreditConsumeRequest,
    CreditApplyRequest,
)
from .refund import RefundNotification, ManualRefundRequest, RefundOverviewRequest, RefundNotifyRequest
from .booking import CancelBookingRequest

__all__ = [
    "PayerInfo",
    "CreatePreferenceRequest",
    "CreatePreferenceResponse",
    "CreatePaymentRequest",
    "CreatePaymentResponse",
    "CardPaymentRequest",
    "CardPaymentResponse",
    "CheckPaymentRequest",
    "CheckPaymentResponse",
    "RefundRequest",
    "RefundResponse",
    "CreditListRequest",
    "CreditCreateRequest",
    "CreditReserveRequest",
    "CreditConsumeRequest",
    "CreditApplyRequest",
    "RefundNotification",
    "ManualRefundRequest",
    "RefundOverviewRequest",
    "RefundNotifyRequest",
    "CancelBookingRequest",
]
