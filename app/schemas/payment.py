"""
Doxologos Payments - Payment Schemas
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, Any


class PayerInfo(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None


class CreatePreferenceRequest(BaseModel):
    """Request para criar preferência de pagamento"""
    booking_id: Optional[str] = None
    inscricao_id: Optional[str] = None
    payer: Optional[PayerInfo] = None
    description: Optional[str] = None
    payment_methods: Optional[dict] = None
    # Aceito por compatibilidade com o frontend, mas nunca usado na cobrança
    amount: Optional[float] = None


class CreatePreferenceResponse(BaseModel):
    success: bool = True
    init_point: Optional[str]
    sandbox_init_point: Optional[str]
    preference_id: str
    mp: dict


class CreatePaymentRequest(BaseModel):
    """Request para criar pagamento PIX"""
    booking_id: Optional[str] = None
    payer: Optional[PayerInfo] = None
    payment_method_id: Optional[str] = "pix"
    description: Optional[str] = None
    amount: Optional[float] = None


class CreatePaymentResponse(BaseModel):
    success: bool = True
    payment_id: str
    status: str
    qr_code: Optional[str] = None
    qr_code_base64: Optional[str] = None
    ticket_url: Optional[str] = None


class CardPayerInfo(BaseModel):
    email: Optional[str] = None
    identification: Optional[dict] = None


class CardPaymentRequest(BaseModel):
    """Request para pagamento direto com token de cartão (Checkout Bricks)"""
    token: Optional[str] = None
    amount: Optional[float] = None
    installments: Optional[int] = 1
    description: Optional[str] = None
    payer: Optional[CardPayerInfo] = None
    booking_id: Optional[str] = None
    inscricao_id: Optional[str] = None


class CardPaymentResponse(BaseModel):
    success: bool = True
    payment_id: str
    status: Optional[str]
    status_detail: Optional[str] = None
    transaction_amount: Optional[float] = None
    message: Optional[str] = None


class CheckPaymentRequest(BaseModel):
    payment_id: Optional[str] = None

    @field_validator("payment_id", mode="before")
    @classmethod
    def payment_id_as_str(cls, v):
        # O MP devolve ids numéricos
        return str(v) if isinstance(v, int) else v


class CheckPaymentResponse(BaseModel):
    success: bool = True
    status: Optional[str]
    status_detail: Optional[str] = None
    payment_method: Optional[str] = None
    amount: Optional[float] = None
    terminal: bool = False
    message: Optional[str] = None


class RefundRequest(BaseModel):
    payment_id: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)

    @field_validator("payment_id", mode="before")
    @classmethod
    def payment_id_as_str(cls, v):
        return str(v) if isinstance(v, int) else v


class RefundResponse(BaseModel):
    success: bool = True
    refund_id: str
    status: Optional[str]
    amount: Optional[float]
    payment_id: Optional[Any]
