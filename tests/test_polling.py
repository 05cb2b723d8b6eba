"""
Poller do checkout: para no primeiro estado final ou quando interrompido.
"""
import asyncio

import pytest

from app.services.payment_polling import PaymentStatusPoller, POLL_INTERVAL_SECONDS


def test_default_interval_is_three_seconds():
    assert POLL_INTERVAL_SECONDS == 3.0
    poller = PaymentStatusPoller(lambda pid: None)
    assert poller.interval == 3.0


@pytest.mark.asyncio
async def test_poller_stops_on_terminal_status():
    statuses = iter(["pending", "in_process", "approved", "approved"])
    calls = []

    async def check(payment_id):
        calls.append(payment_id)
        return {"status": next(statuses)}

    ticks = []
    poller = PaymentStatusPoller(check, interval=0.01, on_tick=ticks.append)
    result = await poller.run("123")

    assert result == {"status": "approved"}
    assert calls == ["123", "123", "123"]
    assert [t["status"] for t in ticks] == ["pending", "in_process", "approved"]


@pytest.mark.asyncio
async def test_poller_stops_on_rejection():
    async def check(payment_id):
        return {"status": "rejected", "message": "Pagamento rejeitado"}

    result = await PaymentStatusPoller(check, interval=0.01).run("1")
    assert result["status"] == "rejected"


@pytest.mark.asyncio
async def test_poller_can_be_stopped():
    calls = 0

    async def check(payment_id):
        nonlocal calls
        calls += 1
        return {"status": "pending"}

    poller = PaymentStatusPoller(check, interval=5)
    task = asyncio.create_task(poller.run("1"))
    await asyncio.sleep(0.05)
    poller.stop()
    result = await asyncio.wait_for(task, timeout=1)

    assert poller.stopped
    assert result == {"status": "pending"}
    assert calls == 1
