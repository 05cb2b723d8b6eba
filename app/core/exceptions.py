"""
Doxologos Payments - Exceptions
Taxonomia de erros dos serviços, convertida em JSON pelos handlers do main
"""
from typing import Any, Optional


class ServiceError(Exception):
    """Erro de negócio com status HTTP associado"""
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        body = {"error": self.message}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(ServiceError):
    status_code = 400


class AuthError(ServiceError):
    status_code = 401


class ForbiddenError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409


class PayloadTooLargeError(ServiceError):
    status_code = 413


class ProviderError(ServiceError):
    """Resposta não-2xx de um provedor externo (Mercado Pago, Zoom)"""
    status_code = 502

    def __init__(self, provider: str, status: Optional[int], body: Any):
        super().__init__(f"{provider} error", details=body)
        self.provider = provider
        self.provider_status = status


class WebhookSignatureError(Exception):
    """Assinatura do webhook inválida ou ausente"""
    pass
