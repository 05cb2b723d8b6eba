"""
Doxologos Payments - Mercado Pago Client
Camada fina sobre o SDK oficial: toda resposta fora de 2xx vira ProviderError
"""
import asyncio
import logging
from typing import Any, Callable, Iterable, Optional

from fastapi import Depends

# SDK do Mercado Pago
import mercadopago
from mercadopago.config import RequestOptions

from app.core.config import Settings, get_settings
from app.core.exceptions import ProviderError, ServiceError

logger = logging.getLogger(__name__)

PROVIDER = "mercadopago"


class MercadoPagoClient:
    """Chamadas ao Mercado Pago usadas pelo fluxo de pagamento"""

    def __init__(self, access_token: Optional[str]):
        self.access_token = access_token
        self._sdk = None

    @property
    def sdk(self):
        if self._sdk is None:
            if not self.access_token:
                logger.error("MP_ACCESS_TOKEN não configurado!")
                raise ServiceError("Mercado Pago not configured")
            self._sdk = mercadopago.SDK(self.access_token)
        return self._sdk

    async def _call(self, operation: str, expected: Iterable[int], func: Callable, *args) -> dict:
        try:
            result = await asyncio.to_thread(func, *args)
        except ServiceError:
            raise
        except Exception as e:
            logger.error(f"Falha de comunicação com o Mercado Pago ({operation}): {e}")
            raise ProviderError(PROVIDER, None, str(e))

        status = result.get("status")
        body: Any = result.get("response")
        if status not in expected:
            logger.error(f"Mercado Pago {operation} retornou {status}: {body}")
            raise ProviderError(PROVIDER, status, body)
        return body

    async def create_preference(self, preference_data: dict) -> dict:
        return await self._call("preference.create", (200, 201), self.sdk.preference().create, preference_data)

    async def _create_payment(self, payment_data: dict, idempotency_key: str) -> dict:
        request_options = RequestOptions()
        request_options.custom_headers = {"x-idempotency-key": idempotency_key}
        return await self._call(
            "payment.create", (200, 201), self.sdk.payment().create, payment_data, request_options
        )

    async def create_pix_payment(self, payment_data: dict, idempotency_key: str) -> dict:
        return await self._create_payment(payment_data, idempotency_key)

    async def create_card_payment(self, payment_data: dict, idempotency_key: str) -> dict:
        # payment_data leva o token gerado pelo Checkout Bricks no navegador
        return await self._create_payment(payment_data, idempotency_key)

    async def get_payment(self, payment_id: str) -> dict:
        return await self._call("payment.get", (200,), self.sdk.payment().get, str(payment_id))

    async def create_refund(self, payment_id: str, amount: Optional[float] = None) -> dict:
        refund_data = {"amount": float(amount)} if amount is not None else None
        return await self._call("refund.create", (200, 201), self.sdk.refund().create, str(payment_id), refund_data)


def get_mercadopago_client(config: Settings = Depends(get_settings)) -> MercadoPagoClient:
    """Dependency: cliente com o token do ambiente configurado (test/production)"""
    return MercadoPagoClient(config.mp_access_token)
