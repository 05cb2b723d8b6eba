"""
Doxologos Payments - Payment Status Poller
Consulta o status do pagamento em intervalo fixo até um estado final
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from app.models import TERMINAL_STATUSES

logger = logging.getLogger(__name__)

POLL_INTERVAL_SECONDS = 3.0


class PaymentStatusPoller:
    """
    Repete check(payment_id) a cada 3 segundos, sem backoff.

    Termina quando o status é approved, rejected ou cancelled, ou quando
    stop() é chamado / a task é cancelada. Retorna o último resultado.
    """

    def __init__(
        self,
        check: Callable[[str], Awaitable[dict]],
        interval: float = POLL_INTERVAL_SECONDS,
        on_tick: Optional[Callable[[dict], None]] = None,
    ):
        self.check = check
        self.interval = interval
        self.on_tick = on_tick
        self._stopped = asyncio.Event()

    def stop(self) -> None:
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def run(self, payment_id: str) -> Optional[dict]:
        last = None
        while not self._stopped.is_set():
            last = await self.check(payment_id)
            if self.on_tick:
                self.on_tick(last)
            if (last or {}).get("status") in TERMINAL_STATUSES:
                logger.info(f"Pagamento {payment_id} em estado final: {last.get('status')}")
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass
        return last
