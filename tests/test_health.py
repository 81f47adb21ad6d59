import aiohttp
import pytest

from bambu_bridge.health import CONTROL_PLANE, HealthReporter, HealthServer


@pytest.mark.asyncio
async def test_health_reporter_snapshot():
    reporter = HealthReporter()

    await reporter.update(CONTROL_PLANE, False, "502")

    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "degraded"
    components = {item["name"]: item for item in snapshot["components"]}
    assert components[CONTROL_PLANE]["healthy"] is False
    assert components[CONTROL_PLANE]["detail"] == "502"


@pytest.mark.asyncio
async def test_offline_printers_do_not_degrade_status():
    reporter = HealthReporter()
    await reporter.update(CONTROL_PLANE, True)

    await reporter.sync_printers({"p1": True, "p2": False})
    snapshot = await reporter.snapshot()

    assert snapshot["status"] == "ok"
    printers = {item["name"]: item for item in snapshot["printers"]}
    assert printers["printer:p1"]["healthy"] is True
    assert printers["printer:p2"]["detail"] == "mqtt disconnected"


@pytest.mark.asyncio
async def test_sync_printers_drops_removed_entries():
    reporter = HealthReporter()
    await reporter.sync_printers({"p1": True, "p2": True})

    await reporter.sync_printers({"p2": True})
    snapshot = await reporter.snapshot()

    assert [item["name"] for item in snapshot["printers"]] == ["printer:p2"]


@pytest.mark.asyncio
async def test_health_server_serves_snapshot(unused_tcp_port):
    reporter = HealthReporter()
    await reporter.update(CONTROL_PLANE, True)

    host = "127.0.0.1"
    port = unused_tcp_port
    server = HealthServer(reporter, host, port)
    await server.start()

    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"http://{host}:{port}/healthz") as response:
                payload = await response.json()
                assert response.status == 200
                assert payload["status"] == "ok"

            await reporter.update(CONTROL_PLANE, False, "timeout")
            async with session.get(f"http://{host}:{port}/healthz") as response:
                assert response.status == 503
    finally:
        await server.stop()


@pytest.mark.asyncio
async def test_fleet_summary_counts_connected_printers():
    reporter = HealthReporter()

    await reporter.sync_printers({"p1": True, "p2": False, "p3": True})
    snapshot = await reporter.snapshot()

    assert snapshot["fleet"] == {"total": 3, "connected": 2}


@pytest.mark.asyncio
async def test_printer_endpoint(unused_tcp_port):
    reporter = HealthReporter()
    await reporter.sync_printers({"p1": True, "p2": False})

    host = "127.0.0.1"
    server = HealthServer(reporter, host, unused_tcp_port)
    await server.start()

    base = f"http://{host}:{unused_tcp_port}/healthz/printers"
    try:
        async with aiohttp.ClientSession() as session:
            async with session.get(f"{base}/p1") as response:
                assert response.status == 200
                assert (await response.json())["name"] == "printer:p1"
            async with session.get(f"{base}/p2") as response:
                assert response.status == 503
            async with session.get(f"{base}/nope") as response:
                assert response.status == 404
    finally:
        await server.stop()
