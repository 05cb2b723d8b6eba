from .booking import Booking, BookingStatus, Service, Professional
from .payment import Payment, PaymentStatus, APPROVED_STATUSES, TERMINAL_STATUSES
from .event import Evento, EventRegistration, EVENT_REFERENCE_PREFIX
from .credit import FinancialCredit, CreditStatus
from .audit import AuditLog
from .refund import PaymentRefund, RefundKind, NotificationStatus

__all__ = [
    "Booking",
    "BookingStatus",
    "Service",
    "Professional",
    "Payment",
    "PaymentStatus",
    "APPROVED_STATUSES",
    "TERMINAL_STATUSES",
    "Evento",
    "EventRegistration",
    "EVENT_REFERENCE_PREFIX",
    "FinancialCredit",
    "CreditStatus",
    "AuditLog",
    "PaymentRefund",
    "RefundKind",
    "NotificationStatus",
]
