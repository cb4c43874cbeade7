import asyncio
from datetime import timedelta

from grocery.orders.sweeper import run_sweep, sweep_forever


def test_run_sweep_expires_and_retries(services, repo, gateway, open_order, clock):
    stale = open_order()["paymentReference"]
    paid = open_order()["paymentReference"]
    gateway.set_status(paid, "success")
    order = services.engine.confirm(paid).order

    clock.now = clock.now + timedelta(minutes=45)
    out = run_sweep(services, retry_grace_seconds=120)

    assert out == {"expired": 1, "retried": 1}
    assert repo.get_pending_by_reference(stale)["payment_status"] == "expired"
    assert repo.orders[order["id"]]["invoice_status"] == "done"
    # Deuxième passage: plus rien à faire
    assert run_sweep(services, retry_grace_seconds=120) == {"expired": 0, "retried": 0}


def test_sweep_loop_survives_errors_and_stops_on_cancel(services, monkeypatch, caplog):
    calls = []

    def flaky(_services, _grace):
        calls.append(1)
        raise RuntimeError("db down")

    monkeypatch.setattr("grocery.orders.sweeper.run_sweep", flaky)

    async def scenario():
        task = asyncio.create_task(sweep_forever(services, interval_seconds=0))
        await asyncio.sleep(0.2)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    asyncio.run(scenario())
    assert len(calls) >= 2
    assert "sweeper iteration failed" in caplog.text
